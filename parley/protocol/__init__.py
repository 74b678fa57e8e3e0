from parley.protocol.events import InboundEvent, UnknownEvent, parse_event
from parley.protocol.outbound import Envelope, OutboundMessageBuilder

__all__ = ["Envelope", "InboundEvent", "OutboundMessageBuilder", "UnknownEvent", "parse_event"]
