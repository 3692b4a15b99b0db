from .state_machine import NegotiationStateMachine, validate_amount

__all__ = ['NegotiationStateMachine', 'validate_amount']
