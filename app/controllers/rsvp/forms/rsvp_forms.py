# rsvp/forms/rsvp_forms.py
from flask_wtf import FlaskForm
from wtforms import StringField, EmailField, TelField, BooleanField
from wtforms.validators import DataRequired, Length, Regexp

from app.services.rsvp_service import EMAIL_PATTERN, PHONE_PATTERN


class RsvpForm(FlaskForm):
    """Guest details submitted to issue an RSVP QR code."""

    class Meta:
        # Posted as JSON by the RSVP page; no server-rendered form carries a token
        csrf = False

    name = StringField('Name', validators=[
        DataRequired(message="Name is required."),
        Length(max=120, message="Name must be less than 120 characters")
    ], render_kw={'placeholder': 'John Doe'})

    email = EmailField('Email', validators=[
        DataRequired(message="Email is required."),
        Regexp(EMAIL_PATTERN, message="Enter a valid email."),
        Length(max=120, message="Email must be less than 120 characters")
    ], render_kw={'placeholder': 'john@example.com'})

    phone = TelField('Phone', validators=[
        DataRequired(message="Phone is required."),
        Regexp(PHONE_PATTERN, message="Enter a valid phone.")
    ], render_kw={'placeholder': '+91 98765 43210'})

    confirm_coming = BooleanField("I confirm I'm coming", validators=[
        DataRequired(message="Please confirm if you're coming.")
    ])

    def identity(self):
        return {
            'name': self.name.data.strip(),
            'email': self.email.data.strip(),
            'phone': self.phone.data.strip(),
        }
