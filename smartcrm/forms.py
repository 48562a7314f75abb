"""
smartcrm/forms.py

Flask-WTF forms validating JSON request bodies.

Flask-WTF reads request.get_json() when the request is JSON, so the same field/validator
declarations work for the SPA client. CSRF for these requests is enforced globally by
CSRFProtect (X-CSRFToken header), hence csrf is off at form level.
"""

from __future__ import annotations

from datetime import datetime

from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import (
    BooleanField,
    DateField,
    IntegerField,
    PasswordField,
    SelectMultipleField,
    StringField,
    TextAreaField,
)
from wtforms.validators import DataRequired, Length, NumberRange, Optional, StopValidation

from .errors import ValidationError


class JsonForm(FlaskForm):
    class Meta:
        csrf = False

        def wrap_formdata(self, form, formdata):
            # JSON null means "not given" for Optional() fields.
            formdata = super().wrap_formdata(form, formdata)
            if formdata is None:
                return None
            return ImmutableMultiDict([(k, v) for k, v in formdata.items(multi=True) if v is not None])


def validate_or_raise(form: FlaskForm) -> FlaskForm:
    if not form.validate_on_submit():
        raise ValidationError("Invalid input.", details={"fields": form.errors})
    return form


def text_only(form, field):
    """JSON may carry numbers or lists where text is expected; reject them before Length() runs."""
    if field.data is not None and not isinstance(field.data, str):
        raise StopValidation("Must be text.")


def as_datetime(value) -> datetime | None:
    """DateField gives a date; stage/task deadlines are stored as datetimes (end of day)."""
    if value is None:
        return None
    return datetime(value.year, value.month, value.day, 23, 59, 59)


class LoginForm(JsonForm):
    username = StringField("Username", validators=[text_only, DataRequired(), Length(max=80)])
    password = PasswordField("Password", validators=[text_only, DataRequired()])


class ObjectForm(JsonForm):
    name = StringField("Name", validators=[text_only, DataRequired(), Length(max=255)])
    address = StringField("Address", validators=[text_only, Optional(), Length(max=255)])
    comment = TextAreaField("Comment", validators=[text_only, Optional()])
    client_id = IntegerField("Client", validators=[DataRequired()])
    responsible_id = IntegerField("Responsible", validators=[DataRequired()])
    deadline = DateField("Deadline", validators=[Optional()])


class ObjectEditForm(JsonForm):
    """PATCH body: every field optional; only keys present in the payload are applied."""

    name = StringField("Name", validators=[text_only, Optional(), Length(max=255)])
    address = StringField("Address", validators=[text_only, Optional(), Length(max=255)])
    comment = TextAreaField("Comment", validators=[text_only, Optional()])
    client_id = IntegerField("Client", validators=[Optional()])
    responsible_id = IntegerField("Responsible", validators=[Optional()])


class AdvanceForm(JsonForm):
    next_stage = StringField("Next stage", validators=[text_only, Optional(), Length(max=32)])
    responsible_id = IntegerField("Responsible", validators=[Optional()])
    deadline = DateField("Deadline", validators=[Optional()])
    force = BooleanField("Confirm despite open tasks")


class RollbackForm(JsonForm):
    target_stage = StringField("Target stage", validators=[text_only, DataRequired(), Length(max=32)])
    reason = TextAreaField("Reason", validators=[text_only, DataRequired(), Length(max=1000)])
    responsible_id = IntegerField("Responsible", validators=[DataRequired()])


class RestoreForm(JsonForm):
    responsible_id = IntegerField("Responsible", validators=[Optional()])
    deadline = DateField("Deadline", validators=[Optional()])


class StatusForm(JsonForm):
    status = StringField("Status", validators=[text_only, DataRequired(), Length(max=32)])


class ExtendDeadlineForm(JsonForm):
    days = IntegerField("Days", validators=[DataRequired(), NumberRange(min=1, max=365)])


class TaskForm(JsonForm):
    title = StringField("Title", validators=[text_only, DataRequired(), Length(max=255)])
    assignee_ids = SelectMultipleField("Assignees", coerce=int, validate_choice=False, validators=[DataRequired()])
    start_date = DateField("Start", validators=[Optional()])
    deadline = DateField("Deadline", validators=[Optional()])
    comment = TextAreaField("Comment", validators=[text_only, Optional()])


class CompleteTaskForm(JsonForm):
    comment = TextAreaField("Comment", validators=[text_only, Optional(), Length(max=2000)])


class ProposalHeaderForm(JsonForm):
    title = StringField("Title", validators=[text_only, Optional(), Length(max=255)])
    client_id = IntegerField("Client", validators=[DataRequired()])
    object_id = IntegerField("Object", validators=[Optional()])
    preamble = TextAreaField("Preamble", validators=[text_only, Optional()])
    footer = TextAreaField("Footer", validators=[text_only, Optional()])
