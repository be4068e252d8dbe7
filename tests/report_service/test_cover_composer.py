"""
Unit tests for the cover composer.

LibreOffice is mocked; templates are real .docx files built with python-docx.
"""

from pathlib import Path
from unittest.mock import patch

import pytest
from docx import Document

from report_service.cover_composer import CoverComposer, fill_docx, fill_paragraph
from report_service.errors import CoverConversionFailed
from report_service.toc_extractor import ToolError


def _write_docx(path: Path) -> Path:
    document = Document()
    document.add_paragraph("{{project}} - {{title}}")
    document.add_paragraph("Rev {{revision}} / {{project}}")
    return _save(document, path)


def _save(document, path: Path) -> Path:
    document.save(str(path))
    return path


def _texts(path: Path):
    return [p.text for p in Document(str(path)).paragraphs]


@pytest.fixture
def template(report_settings) -> Path:
    return _write_docx(report_settings.templates_dir / "cover.docx")


def _fake_soffice(write_pdf=True, captured=None):
    async def run(cmd, stdin_data=None, timeout=300):
        working_copy = Path(cmd[-1])
        if captured is not None:
            captured.extend(_texts(working_copy))
        if write_pdf:
            outdir = Path(cmd[cmd.index("--outdir") + 1])
            (outdir / f"{working_copy.stem}.pdf").write_bytes(b"%PDF-cover")
        return b""
    return run


class TestFillParagraph:
    """Placeholder replacement at paragraph level."""

    def test_replaces_every_occurrence(self):
        paragraph = Document().add_paragraph("{{project}}: {{title}} ({{project}})")

        assert fill_paragraph(paragraph, {"project": "P-1", "title": "T"}) == 3
        assert paragraph.text == "P-1: T (P-1)"

    def test_unknown_placeholders_are_left(self):
        paragraph = Document().add_paragraph("Rev {{revision}}")

        assert fill_paragraph(paragraph, {"project": "P-1"}) == 0
        assert paragraph.text == "Rev {{revision}}"

    def test_placeholder_split_across_runs(self):
        paragraph = Document().add_paragraph()
        paragraph.add_run("Name: {{pro")
        bold = paragraph.add_run("ject}}!")
        bold.bold = True

        assert fill_paragraph(paragraph, {"project": "Apollo"}) == 1
        assert paragraph.text == "Name: Apollo!"
        assert [run.text for run in paragraph.runs] == ["Name: Apollo", "!"]
        assert paragraph.runs[1].bold is True

    def test_placeholder_split_across_three_runs(self):
        paragraph = Document().add_paragraph()
        for part in ("{{", "title", "}} end"):
            paragraph.add_run(part)

        fill_paragraph(paragraph, {"title": "Plan"})

        assert paragraph.text == "Plan end"

    def test_value_containing_markup_is_kept_literal(self, tmp_path):
        document = Document()
        document.add_paragraph("{{title}}")
        path = _save(document, tmp_path / "copy.docx")

        fill_docx(path, {"title": "A & B <draft>"})

        assert _texts(path) == ["A & B <draft>"]


class TestFillDocx:
    """Placeholders are found in tables, headers and footers too."""

    def test_fills_body_tables_headers_and_footers(self, tmp_path):
        document = Document()
        document.add_paragraph("{{project}}")
        table = document.add_table(rows=1, cols=2)
        table.cell(0, 0).text = "Owner"
        table.cell(0, 1).text = "{{owner}}"
        section = document.sections[0]
        section.header.paragraphs[0].text = "Header {{project}}"
        section.footer.paragraphs[0].text = "Footer {{owner}}"
        path = _save(document, tmp_path / "copy.docx")

        replaced = fill_docx(path, {"project": "Apollo", "owner": "Dana"})

        filled = Document(str(path))
        assert replaced == 4
        assert filled.paragraphs[0].text == "Apollo"
        assert filled.tables[0].cell(0, 1).text == "Dana"
        assert filled.sections[0].header.paragraphs[0].text == "Header Apollo"
        assert filled.sections[0].footer.paragraphs[0].text == "Footer Dana"

    def test_split_placeholder_in_saved_document(self, tmp_path):
        document = Document()
        paragraph = document.add_paragraph()
        paragraph.add_run("{{pro")
        paragraph.add_run("ject}}").bold = True
        path = _save(document, tmp_path / "copy.docx")

        fill_docx(path, {"project": "Apollo"})

        assert _texts(path) == ["Apollo"]


class TestCoverComposer:
    """Tests for CoverComposer.compose."""

    @pytest.mark.asyncio
    async def test_compose_produces_pdf_and_removes_working_copy(self, report_settings, template, tmp_path):
        output = tmp_path / "run_cover.pdf"
        captured = []

        with patch("report_service.cover_composer.run_tool", side_effect=_fake_soffice(captured=captured)):
            result = await CoverComposer(report_settings).compose(
                template, {"project": "Apollo", "title": "Plan", "revision": "3"}, output
            )

        assert result == output
        assert output.read_bytes() == b"%PDF-cover"
        assert captured == ["Apollo - Plan", "Rev 3 / Apollo"]
        assert not output.with_suffix(".docx").exists()
        # Template itself is never modified
        assert _texts(template)[0] == "{{project}} - {{title}}"

    @pytest.mark.asyncio
    async def test_conversion_failure_raises_and_cleans_up(self, report_settings, template, tmp_path):
        output = tmp_path / "run_cover.pdf"
        error = ToolError(["soffice"], "exited with code 1: boom", 1)

        with patch("report_service.cover_composer.run_tool", side_effect=error):
            with pytest.raises(CoverConversionFailed, match="Failed to convert document"):
                await CoverComposer(report_settings).compose(template, {}, output)

        assert not output.with_suffix(".docx").exists()

    @pytest.mark.asyncio
    async def test_missing_output_raises(self, report_settings, template, tmp_path):
        output = tmp_path / "run_cover.pdf"

        with patch("report_service.cover_composer.run_tool", side_effect=_fake_soffice(write_pdf=False)):
            with pytest.raises(CoverConversionFailed, match="output file not found"):
                await CoverComposer(report_settings).compose(template, {}, output)

        assert not output.with_suffix(".docx").exists()

    @pytest.mark.asyncio
    async def test_invalid_template_raises_and_cleans_up(self, report_settings, tmp_path):
        bogus = report_settings.templates_dir / "bogus.docx"
        bogus.write_text("not a zip")
        output = tmp_path / "run_cover.pdf"

        with pytest.raises(CoverConversionFailed, match="Failed to fill"):
            await CoverComposer(report_settings).compose(bogus, {"a": "b"}, output)

        assert not output.with_suffix(".docx").exists()

    @pytest.mark.asyncio
    async def test_soffice_command_line(self, report_settings, template, tmp_path):
        output = tmp_path / "run_cover.pdf"
        commands = []
        soffice = _fake_soffice()

        async def recording(cmd, stdin_data=None, timeout=300):
            commands.append(cmd)
            return await soffice(cmd, stdin_data, timeout)

        with patch("report_service.cover_composer.run_tool", side_effect=recording):
            await CoverComposer(report_settings).compose(template, {}, output)

        assert commands[0][:5] == ["soffice", "--headless", "--convert-to", "pdf", "--outdir"]
        assert commands[0][5] == str(tmp_path)
        assert commands[0][6] == str(output.with_suffix(".docx"))


class TestResolveTemplate:
    """Tests for CoverComposer.resolve_template."""

    def test_resolves_inside_templates_dir(self, report_settings, template):
        assert CoverComposer(report_settings).resolve_template("cover.docx") == template.resolve()

    def test_rejects_path_traversal(self, report_settings):
        with pytest.raises(CoverConversionFailed, match="outside templates directory"):
            CoverComposer(report_settings).resolve_template("../config/recipe.toml")

    def test_rejects_missing_template(self, report_settings):
        with pytest.raises(CoverConversionFailed, match="does not exist"):
            CoverComposer(report_settings).resolve_template("absent.docx")
