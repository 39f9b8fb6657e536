"""
Error taxonomy for the coordination server.

CorruptStateError   - invariant violation (a bug elsewhere); never swallowed
DuplicateIdError    - an entity with that id already exists in its collection
NotFoundError       - an operation referenced an id absent from the registry
"""


class CorruptStateError(RuntimeError):
    """Two entities share an id inside one collection"""


class DuplicateIdError(ValueError):
    """Entity id already present in the target collection"""

    def __init__(self, kind, entity_id: str):
        super().__init__(f"{kind.value} with id '{entity_id}' already exists")
        self.kind = kind
        self.entity_id = entity_id


class NotFoundError(LookupError):
    """Referenced id is not in the registry"""

    def __init__(self, kind, entity_id: str):
        super().__init__(f"{kind.value} '{entity_id}' not found")
        self.kind = kind
        self.entity_id = entity_id
