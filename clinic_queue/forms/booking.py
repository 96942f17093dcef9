"""Booking and break request forms (accept form posts or JSON bodies)."""

from __future__ import annotations

from flask_wtf import FlaskForm
from wtforms import DateField, IntegerField, SelectField, StringField
from wtforms.validators import AnyOf, DataRequired, Length, NumberRange, Optional, Regexp, ValidationError

from clinic_queue.services.errors import ValidationFailed

PHONE_PATTERN = r"^\+\d{8,15}$"


class WalkInBookingForm(FlaskForm):
    """Patient details for a booking; an existing ``patient_id`` or a name is required."""

    patient_id = StringField("Patient", validators=[Optional(), Length(max=64)])
    patient_name = StringField("Patient Name", validators=[Length(max=200)])
    phone = StringField("Phone", validators=[
        Optional(),
        Regexp(PHONE_PATTERN, message="Use international format, e.g. +15551234567"),
    ])
    age = IntegerField("Age", validators=[Optional(), NumberRange(min=0, max=130)])
    sex = StringField("Sex", validators=[Optional(), AnyOf(["Male", "Female", "Other"])])
    treatment = StringField("Treatment", validators=[Optional(), Length(max=500)])

    def validate_patient_name(self, field) -> None:
        if not (self.patient_id.data or "").strip() and not (field.data or "").strip():
            raise ValidationError("Patient name is required for new patients.")


class AdvancedBookingForm(WalkInBookingForm):
    date = DateField("Date", validators=[DataRequired()])
    time = StringField("Time", validators=[DataRequired(), Length(max=8)])


class BreakForm(FlaskForm):
    date = DateField("Date", validators=[DataRequired()])
    start_time = StringField("Break Start", validators=[DataRequired(), Length(max=8)])
    end_time = StringField("Break End", validators=[DataRequired(), Length(max=8)])
    choice = SelectField(
        "Extension",
        choices=[("minimal", "Minimal"), ("full", "Full"), ("none", "None")],
        validators=[Optional()],
        validate_choice=False,
    )


class BreakCancelForm(FlaskForm):
    date = DateField("Date", validators=[DataRequired()])
    break_start = StringField("Break Start", validators=[Optional(), Length(max=8)])


def validated(form: FlaskForm) -> FlaskForm:
    """Return ``form`` if it validates, otherwise raise with the first field error."""

    if form.validate():
        return form
    field, messages = next(iter(form.errors.items()))
    raise ValidationFailed(f"invalid_{field}", "; ".join(str(m) for m in messages))
