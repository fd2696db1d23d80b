"""
Refinement Agent

Drives a task through a search, think, evaluate and feedback loop over a
chat-completions model until the evaluation score reaches the target or
the attempt budget is spent, then assembles and exports a report.

Subpackages:
  - agent:    orchestrator, working memory, evaluator, turn providers
  - services: model gateway and token usage ledger
  - tools:    report assembly and document rendering
  - api:      FastAPI routers
  - models:   pydantic schemas
"""
