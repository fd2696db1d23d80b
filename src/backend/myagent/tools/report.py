"""
Tool: Report Assembler

Turns everything the run accumulated into one final answer. It gathers the
latest research context, the most recent approaches and every piece of
feedback, asks the default model to write the report, and hands the
markdown to the document renderer.
"""
from __future__ import annotations

import hashlib
import logging
from typing import List, Optional

from myagent.agent.memory import WorkingMemory
from myagent.models.schemas import FinalReport, Task
from myagent.services.gateway import ModelGateway
from myagent.tools.renderer import DocumentRenderer, RenderError

logger = logging.getLogger(__name__)

APPROACH_WINDOW = 3
TITLE_MAX_LENGTH = 80

SYSTEM_PROMPT = """You are a professional report writer. You receive the research notes,
candidate solutions and reviewer feedback produced while working on a task, and you
turn them into one final, polished answer.

1. Answer the task directly; lead with the conclusion.
2. Merge the candidate solutions. Keep what is strongest, drop what the feedback rejected.
3. Address every open point raised in the feedback.
4. Use clear markdown structure: headings, short paragraphs, lists where they help.
5. Do not mention the drafting process, the attempts, or the reviewers."""

SYNTHESIS_PROMPT = """Write the final report for the following task.

═══ TASK ═══
{task}

═══ RESEARCH CONTEXT ═══
{context}

═══ MOST RECENT APPROACHES (oldest first) ═══
{approaches}
{feedback_section}
Produce a comprehensive, self-contained final answer in markdown."""

FEEDBACK_SECTION = """
═══ REVIEWER FEEDBACK ═══
{feedback}
"""


def report_title(description: str) -> str:
    title = f"Report: {description.strip()}"
    if len(title) > TITLE_MAX_LENGTH:
        title = title[: TITLE_MAX_LENGTH - 3].rstrip() + "..."
    return title


def report_filename(description: str) -> str:
    """Stable per task, so repeated runs of the same task reuse the name."""
    digest = hashlib.sha256(description.encode("utf-8")).hexdigest()
    return f"report_{digest[:16]}"


class ReportAssembler:
    """Synthesizes the accumulated memory into a final report."""

    def __init__(self, gateway: ModelGateway, renderer: Optional[DocumentRenderer] = None):
        self.gateway = gateway
        self.renderer = renderer

    async def assemble(self, task: Task, memory: WorkingMemory) -> FinalReport:
        """
        Build the synthesis prompt, generate the report and export it.

        Returns:
            FinalReport — export_path stays empty if no renderer is set or
            the export failed.
        """
        prompt = self.build_prompt(task, memory)
        markdown = await self.gateway.generate(
            prompt,
            model_alias="default",
            system_prompt=SYSTEM_PROMPT,
        )

        report = FinalReport(
            title=report_title(task.description),
            filename=report_filename(task.description),
            markdown=markdown,
        )

        if self.renderer is not None:
            try:
                path = self.renderer.render(report.markdown, report.title, report.filename)
                report.export_path = str(path)
            except (OSError, RenderError) as e:
                logger.error(f"Report export failed for {report.filename}: {e}")

        logger.info("Synthesis complete — final report generated")
        return report

    def build_prompt(self, task: Task, memory: WorkingMemory) -> str:
        feedback = memory.all_feedback()
        feedback_section = ""
        if feedback:
            feedback_section = FEEDBACK_SECTION.format(
                feedback=self._format_numbered([f.content for f in feedback], "Feedback"),
            )

        recent = [a.content for a in memory.all_approaches()[-APPROACH_WINDOW:]]
        return SYNTHESIS_PROMPT.format(
            task=task.to_prompt().strip(),
            context=memory.recent_context_summary().strip(),
            approaches=self._format_numbered(recent, "Approach") or "No approaches were generated.",
            feedback_section=feedback_section,
        )

    @staticmethod
    def _format_numbered(items: List[str], label: str) -> str:
        return "\n\n".join(f"{label} {i}:\n{item}" for i, item in enumerate(items, 1))
