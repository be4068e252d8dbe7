"""
PDF assembler - merges report sections with pypdf.

The body (with its outline) is the base document. Front sections are
inserted at index 0 one page at a time, last section first and each
section's pages in reverse, which yields cover, history, toc, body with
every section's own page order intact.
"""

import logging
import time
from io import BytesIO

from pypdf import PdfReader, PdfWriter

from .errors import AssemblyFailed, StageResult
from .models import AssemblyOutcome, AssemblyPlan

logger = logging.getLogger(__name__)

# Front sections in insertion order; each goes in front of the previous one
INSERTION_ORDER = ("toc", "history", "cover")


class PdfAssembler:
    """Merges an AssemblyPlan into one document."""

    def merge(self, plan: AssemblyPlan) -> bytes:
        """
        Merge every section of the plan.

        Raises:
            AssemblyFailed: A section could not be parsed or written
        """
        started = time.perf_counter()
        try:
            writer = PdfWriter(clone_from=PdfReader(BytesIO(plan.body.pdf_bytes)))

            for name in INSERTION_ORDER:
                section = plan.get(name)
                if section is None:
                    continue
                pages = list(PdfReader(BytesIO(section.pdf_bytes)).pages)
                if not pages:
                    raise AssemblyFailed(f"Section '{name}' has no pages")
                if name == "cover":
                    # Covers are single page; extra template pages are dropped
                    pages = pages[:1]
                for page in reversed(pages):
                    writer.insert_page(page, 0)
                logger.debug(f"Inserted {len(pages)} '{name}' page(s)")

            buffer = BytesIO()
            writer.write(buffer)
        except AssemblyFailed:
            raise
        except Exception as e:
            raise AssemblyFailed(f"Failed to merge sections {plan.names}: {e}") from e

        logger.info(
            f"Merge generation took: {time.perf_counter() - started:.2f} seconds "
            f"({len(writer.pages)} pages)"
        )
        return buffer.getvalue()

    def assemble(self, plan: AssemblyPlan) -> AssemblyOutcome:
        """Merge the plan, or fall back to the body alone when merging fails."""
        if plan.names == ["body"]:
            return AssemblyOutcome(pdf_bytes=plan.body.pdf_bytes, sections=["body"])

        try:
            merged = self.merge(plan)
        except AssemblyFailed as e:
            logger.error(f"Assembly failed, returning body only: {e}")
            failure = StageResult.failure("assembly", e)
            return AssemblyOutcome(
                pdf_bytes=plan.body.pdf_bytes,
                sections=["body"],
                degraded=True,
                error=failure.error,
            )
        return AssemblyOutcome(pdf_bytes=merged, sections=plan.names)

