from .rsvp_forms import RsvpForm

__all__ = ['RsvpForm']
