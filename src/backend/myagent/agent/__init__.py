"""
The refinement loop: orchestrator, working memory, evaluator and the
turn providers that stand in for a human at the console.

Files in this package may import from:
  - myagent.services.* (gateway, usage ledger)
  - myagent.tools.*    (report assembly)
  - myagent.models.*   (schemas)
"""
