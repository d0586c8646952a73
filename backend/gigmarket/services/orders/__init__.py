"""Order lifecycle: state machine, progress, negotiation and side effects."""
