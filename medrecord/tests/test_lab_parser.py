import pytest

from medrecord.services.lab_parser import parse_lab_text, parse_line
from medrecord.services.lab_types import RawLabValue


def test_parses_value_unit_and_range():
    assert parse_lab_text("Glucosa: 110 mg/dL (70-100)") == [
        RawLabValue(test="Glucosa", value="110", unit="mg/dL", range="70-100")
    ]


@pytest.mark.parametrize(
    "line,test,value,unit,range_",
    [
        ("Ácido úrico - 5,4 mg/dL 3,5-7,2", "Ácido úrico", "5,4", "mg/dL", "3,5-7,2"),
        ("HDL: 38 mg/dL (>40)", "HDL", "38", "mg/dL", ">40"),
        ("Colesterol total: 245 mg/dL (<200)", "Colesterol total", "245", "mg/dL", "<200"),
        ("Hemoglobina: 13.5 g/dL (12 - 16)", "Hemoglobina", "13.5", "g/dL", "12-16"),
        ("Hematocrito: 41 %", "Hematocrito", "41", "%", None),
        ("Leucocitos: 7.2 10^3/µL (4.0-10.0)", "Leucocitos", "7.2", "10^3/µL", "4.0-10.0"),
        ("TSH: 2,1", "TSH", "2,1", None, None),
        ("Vitamina B12: 350 pg/mL (200-900)", "Vitamina B12", "350", "pg/mL", "200-900"),
        ("HbA1c: 5.6 % (4-5.6)", "HbA1c", "5.6", "%", "4-5.6"),
        ("T4 libre: 1.2 ng/dL", "T4 libre", "1.2", "ng/dL", None),
        ("CD4: 500 cel/uL", "CD4", "500", "cel/uL", None),
        ("25-OH Vitamina D: 30 ng/mL (30-100)", "25-OH Vitamina D", "30", "ng/mL", "30-100"),
        ("Colesterol (HDL): 38 mg/dL (>40)", "Colesterol (HDL)", "38", "mg/dL", ">40"),
    ],
)
def test_line_shapes(line, test, value, unit, range_):
    parsed = parse_line(line)
    assert parsed is not None
    assert (parsed.test, parsed.value, parsed.unit, parsed.range) == (test, value, unit, range_)


@pytest.mark.parametrize(
    "line",
    [
        "Fecha: 2024-05-01",
        "Fecha: 01/05/2024",
        "Hora: 10:30",
        "Fecha 2024-05-01",
        "Rango 70-100",
        "Paciente: Ana García",
        "LABORATORIO CENTRAL",
        "",
        "12345",
    ],
)
def test_non_result_lines_are_ignored(line):
    assert parse_line(line) is None


def test_document_order_is_preserved():
    text = "\n".join(
        [
            "LABORATORIO CENTRAL",
            "Fecha: 2024-05-01",
            "Glucosa: 110 mg/dL (70-100)",
            "",
            "Urea: 30 mg/dL (15-45)",
            "Creatinina: 0,9 mg/dL (0,6-1,2)",
            "HbA1c: 6.8 % (4-5.6)",
        ]
    )
    values = parse_lab_text(text)
    assert [v.test for v in values] == ["Glucosa", "Urea", "Creatinina", "HbA1c"]
    assert values[2].value == "0,9"


def test_empty_text():
    assert parse_lab_text("") == []
    assert parse_lab_text(None) == []
