"""Vendor adapters implementing the TelephonyProvider interface."""

from callcenter.telephony.adapters.custom import CustomProviderAdapter
from callcenter.telephony.adapters.exotel import ExotelAdapter
from callcenter.telephony.adapters.mock import MockTelephonyAdapter
from callcenter.telephony.adapters.twilio import TwilioAdapter
from callcenter.telephony.adapters.voicebase import VoiceBaseAdapter

__all__ = [
    "CustomProviderAdapter",
    "ExotelAdapter",
    "MockTelephonyAdapter",
    "TwilioAdapter",
    "VoiceBaseAdapter",
]
