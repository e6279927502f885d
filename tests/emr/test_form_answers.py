import pytest
from PIL import Image

from src.emr.domain.models.form_schema import ElementValidation, FormElement, TableColumn
from src.emr.domain.models.submission import AnswerInput
from src.emr.errors import ValidationError
from src.emr.services.forms.answers import build_form_data
from src.emr.services.forms.signature import (
    MAX_IMAGE_SIDE,
    SignaturePad,
    decode_data_url,
    encode_data_url,
    pixel_difference,
)

ELEMENTS = [
    FormElement(id="intro", type="staticText", description="Welcome"),
    FormElement(id="q1", type="text", label="Reason for visit", required=True),
    FormElement(id="smoker", type="checkbox", label="Do you smoke?"),
    FormElement(id="visit", type="radio", label="Visit type", options=["new", "follow-up"]),
    FormElement(id="dob", type="date", label="Date of birth"),
    FormElement(
        id="meds",
        type="table",
        label="Medications",
        columns=[TableColumn(id="name", header="Name"), TableColumn(id="dose_mg", header="Dose", type="number")],
        validation=ElementValidation(max_rows=2),
    ),
]


def _answers(**values):
    return [AnswerInput(field_id=key, answer=value) for key, value in values.items()]


def test_build_form_data_follows_schema_order():
    form_data = build_form_data(ELEMENTS, _answers(visit="new", q1="Headache", smoker=True))

    assert [item.field_id for item in form_data] == ["intro", "q1", "smoker", "visit", "dob", "meds"]
    assert form_data[0].answer is None
    assert form_data[1].question == "Reason for visit"
    assert form_data[1].answer == "Headache"
    assert form_data[2].answer is True
    assert form_data[4].answer is None


def test_missing_required_answer_fails():
    with pytest.raises(ValidationError) as exc_info:
        build_form_data(ELEMENTS, [])

    assert any("q1" in message for message in exc_info.value.errors)

    with pytest.raises(ValidationError):
        build_form_data(ELEMENTS, _answers(q1="   "))


def test_type_errors_are_collected():
    with pytest.raises(ValidationError) as exc_info:
        build_form_data(
            ELEMENTS,
            _answers(q1="ok", smoker="yes", visit="emergency", dob="31/12/1990", unknown="x"),
        )

    errors = exc_info.value.errors
    assert "smoker: expected true or false" in errors
    assert "visit: 'emergency' is not one of the options" in errors
    assert "dob: expected an ISO date (YYYY-MM-DD)" in errors
    assert "unknown: unknown field" in errors


def test_table_rows_are_checked():
    rows = [{"name": "Aspirin", "dose_mg": "81"}]
    form_data = build_form_data(ELEMENTS, _answers(q1="ok", meds=rows))
    assert form_data[-1].answer == rows

    with pytest.raises(ValidationError) as exc_info:
        build_form_data(ELEMENTS, _answers(q1="ok", meds=[{"name": "A", "dose_mg": "lots"}, {}, {}]))
    errors = exc_info.value.errors
    assert "meds: table allows at most 2 rows" in errors
    assert "meds: row 0 column 'dose_mg' must be a number" in errors


def test_text_validation_rules():
    elements = [
        FormElement(
            id="zip",
            type="text",
            label="ZIP",
            validation=ElementValidation(min_length=5, max_length=5, pattern=r"\d+"),
        )
    ]

    assert build_form_data(elements, _answers(zip="12345"))[0].answer == "12345"
    with pytest.raises(ValidationError):
        build_form_data(elements, _answers(zip="12a45"))
    with pytest.raises(ValidationError):
        build_form_data(elements, _answers(zip="123"))


def test_signature_pad_round_trip():
    pad = SignaturePad(width=120, height=60)
    assert pad.to_data_url() == ""

    # Movement before a stroke begins draws nothing.
    pad.move_to(10, 10)
    assert pad.is_empty

    pad.begin_stroke(10, 10)
    pad.move_to(60, 40)
    pad.move_to(100, 20)
    pad.end_stroke()
    assert not pad.is_drawing
    assert len(pad.strokes[0]) == 3

    data_url = pad.to_data_url()
    assert data_url.startswith("data:image/png;base64,")

    restored = SignaturePad(width=120, height=60)
    restored.load_data_url(data_url)
    assert pixel_difference(pad.to_image(), restored.to_image()) == 0

    pad.clear()
    assert pad.is_empty
    assert pad.strokes == []


def test_signature_answers_must_be_images():
    elements = [FormElement(id="sig", type="signature", label="Signature", required=True)]
    valid = encode_data_url(Image.new("RGBA", (4, 4), (0, 0, 0, 255)))

    assert build_form_data(elements, _answers(sig=valid))[0].answer == valid
    with pytest.raises(ValidationError):
        build_form_data(elements, _answers(sig="data:image/png;base64,not-base64!"))
    with pytest.raises(ValidationError):
        decode_data_url("hello")


def test_stored_schema_with_broken_pattern_fails_validation():
    elements = [FormElement(id="zip", type="text", label="ZIP", validation=ElementValidation(pattern="[a-"))]

    with pytest.raises(ValidationError) as exc_info:
        build_form_data(elements, _answers(zip="abc"))

    assert exc_info.value.errors == ["zip: field has an invalid validation pattern"]


def test_oversized_signature_canvas_is_rejected():
    elements = [FormElement(id="sig", type="signature", label="Signature")]
    oversized = encode_data_url(Image.new("1", (MAX_IMAGE_SIDE + 1, 1)))

    with pytest.raises(ValidationError) as exc_info:
        build_form_data(elements, _answers(sig=oversized))

    assert "at most" in exc_info.value.errors[0]


def test_decompression_bomb_is_a_validation_error(monkeypatch):
    bomb = encode_data_url(Image.new("1", (200, 200)))
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(ValidationError):
        decode_data_url(bomb)
