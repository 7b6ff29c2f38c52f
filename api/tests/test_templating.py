import zipfile
from datetime import date
from io import BytesIO

import pytest
from docx import Document as DocxDocument
from docx.oxml import parse_xml
from docx.oxml.ns import nsdecls

from docseal.errors import TemplateError
from docseal.templating import (
    MissingValuePolicy,
    TemplateRenderer,
    extract_placeholders,
    format_number,
    format_value,
)

from conftest import docx_text, make_docx


def test_extract_placeholders_in_order_without_duplicates():
    source = make_docx(
        paragraphs=["Contrato de {{nome}}", "Valor: {{ valor }} pago por {{nome}}"],
        table_rows=[["{{cidade}}", "{{data_assinatura}}"]],
        header="Ref {{codigo}}",
    )
    assert extract_placeholders(source) == ["nome", "valor", "cidade", "data_assinatura", "codigo"]


def test_superset_of_values_renders_without_placeholders():
    source = make_docx(
        paragraphs=["Cliente: {{nome}}", "Total: {{valor_total}}"],
        table_rows=[["Cidade", "{{cidade}}"]],
        header="Contrato {{codigo}}",
    )
    values = {"nome": "Maria", "valor_total": 1234.5, "cidade": "Recife", "codigo": "C-7", "extra": "ignored"}
    text = docx_text(TemplateRenderer().render(source, values))
    assert "{{" not in text
    assert "Cliente: Maria" in text
    assert "Total: 1.234,5" in text
    assert "Recife" in text
    assert "Contrato C-7" in text


def test_placeholder_split_across_runs_is_replaced():
    source = make_docx(split_runs=[["Olá {{no", "me}}", ", bem-vindo"]])
    text = docx_text(TemplateRenderer().render(source, {"nome": "João"}))
    assert "Olá João, bem-vindo" in text


def test_missing_values_become_empty_by_default():
    source = make_docx(paragraphs=["A{{presente}}B{{ausente}}C"])
    text = docx_text(TemplateRenderer().render(source, {"presente": "x"}))
    assert "AxBC" in text


def test_keep_policy_leaves_placeholder():
    source = make_docx(paragraphs=["Olá {{nome}}"])
    text = docx_text(TemplateRenderer(MissingValuePolicy.KEEP).render(source, {}))
    assert "{{nome}}" in text


def test_strict_policy_fails():
    source = make_docx(paragraphs=["Olá {{nome}}"])
    with pytest.raises(TemplateError):
        TemplateRenderer(MissingValuePolicy.STRICT).render(source, {})


def test_corrupt_template_raises_template_error():
    with pytest.raises(TemplateError):
        TemplateRenderer().render(b"definitely not a zip", {})
    with pytest.raises(TemplateError):
        extract_placeholders(b"PK\x03\x04 broken")


@pytest.mark.parametrize(
    "value,expected",
    [(1500, "1.500"), (1234.5, "1.234,5"), (0.1235, "0,124"), (2.0, "2"), (-1000000.25, "-1.000.000,25")],
)
def test_format_number(value, expected):
    assert format_number(value) == expected


def test_format_value_by_name_hint():
    assert format_value("data_inicio", "2024-03-05") == "05/03/2024"
    assert format_value("prazo", date(2025, 1, 31)) == "31/01/2025"
    assert format_value("preco", 10) == "10"
    assert format_value("preco", "não numérico") == "não numérico"
    assert format_value("nome", 1500) == "1500"


VML_NS = 'xmlns:v="urn:schemas-microsoft-com:vml"'


def _docx_with_nested_text():
    doc = DocxDocument()
    link = doc.add_paragraph("Responsável: ")
    link._p.append(parse_xml(
        f'<w:hyperlink {nsdecls("w")} w:anchor="topo">'
        "<w:r><w:t>{{no</w:t></w:r><w:r><w:t>me}}</w:t></w:r>"
        "</w:hyperlink>"
    ))
    box = doc.add_paragraph("Antes da caixa ")
    box._p.append(parse_xml(
        f'<w:r {nsdecls("w")} {VML_NS}><w:pict><v:shape style="width:120pt;height:40pt"><v:textbox>'
        "<w:txbxContent><w:p><w:r><w:t>Cidade: {{cidade}}</w:t></w:r></w:p></w:txbxContent>"
        "</v:textbox></v:shape></w:pict></w:r>"
    ))
    control = doc.add_paragraph()
    control._p.append(parse_xml(
        f'<w:sdt {nsdecls("w")}><w:sdtContent><w:r><w:t>Código {{{{codigo}}}}</w:t></w:r></w:sdtContent></w:sdt>'
    ))
    buf = BytesIO()
    doc.save(buf)
    return buf.getvalue()


def _document_xml(data: bytes) -> str:
    with zipfile.ZipFile(BytesIO(data)) as zf:
        return zf.read("word/document.xml").decode("utf-8")


def test_placeholders_in_hyperlinks_text_boxes_and_content_controls():
    source = _docx_with_nested_text()
    assert extract_placeholders(source) == ["nome", "cidade", "codigo"]

    xml = _document_xml(TemplateRenderer().render(source, {"nome": "Maria", "cidade": "Recife"}))
    assert "{{" not in xml and "}}" not in xml
    assert "Maria" in xml
    assert "Cidade: Recife" in xml
    assert "Código </w:t>" in xml
