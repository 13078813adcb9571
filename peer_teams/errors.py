"""Domain errors raised by the team and participant services."""


class PeerTeamsError(Exception):
	"""Base class for every domain failure."""


class ValidationError(PeerTeamsError, ValueError):
	"""Input violates a model invariant (context XOR, missing field, malformed value)."""


class DuplicateContextError(ValidationError):
	"""The user is already bound to the requested context."""


class ImportRowError(ValidationError):
	"""A tabular row cannot be imported."""


class NotFoundError(PeerTeamsError, LookupError):
	"""A team, membership, user or context does not exist."""


class MissingParticipantError(NotFoundError):
	"""The user has no participant record in the team's context."""


class AlreadyMemberError(PeerTeamsError, ValueError):
	"""The user (or participant) is already a member of the team."""


class CapacityExceededError(PeerTeamsError, RuntimeError):
	"""The team reached its capacity while the membership was being written."""


class DependentAssociationError(PeerTeamsError, RuntimeError):
	"""Deletion refused because dependent records exist and force was not given."""


class AuthorizationError(PeerTeamsError, PermissionError):
	"""The acting user may not perform the operation."""
