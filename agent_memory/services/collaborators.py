"""
Contracts for collaborators owned by the surrounding workspace product.
"""

from typing import List, Optional, Protocol

from ..models.profile import ProfileModel
from ..models.workspace import Space, User


class WorkspaceDirectory(Protocol):
    """Resolves spaces and active users."""

    def get_space(self, space_id: str) -> Optional[Space]:
        ...

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def list_space_members(self, space_id: str) -> List[User]:
        """Active (not deleted, not deactivated) members of a space."""
        ...


class ProfileRenderer(Protocol):
    """Publishes a distilled profile as a document in the product."""

    def publish(self, space: Space, user: User, profile: ProfileModel) -> None:
        ...
