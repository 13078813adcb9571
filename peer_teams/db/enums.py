import enum

class UserRole(enum.StrEnum):
    STUDENT = "student"
    TEACHING_ASSISTANT = "teaching_assistant"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    def has_privileges_of(self, other: "UserRole") -> bool:
        return self.level >= other.level

_ROLE_LEVELS = {
    UserRole.STUDENT: 0,
    UserRole.TEACHING_ASSISTANT: 1,
    UserRole.INSTRUCTOR: 2,
    UserRole.ADMIN: 3,
}

class ContextKind(enum.StrEnum):
    ASSIGNMENT = "assignment"
    COURSE = "course"

class AuthorizationRole(enum.StrEnum):
    MENTOR = "mentor"
    READER = "reader"
    SUBMITTER = "submitter"
    REVIEWER = "reviewer"
    PARTICIPANT = "participant"

class NodeType(enum.StrEnum):
    TEAM = "team"
    PARTICIPANT = "participant"

class DuplicateHandling(enum.StrEnum):
    IGNORE = "ignore"
    RENAME = "rename"
    REPLACE = "replace"

    @classmethod
    def parse(cls, value: "str | DuplicateHandling | None") -> "DuplicateHandling | None":
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None
