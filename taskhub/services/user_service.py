"""
User service: the identity and authorization collaborator.

Users and their role memberships live in the same database as the tasks.
Other services never query roles themselves; they receive an
``AccessContext`` built here.
"""

from typing import Iterable, List, Set

from taskhub.models.base import InvalidOperationError, NotFoundError
from taskhub.models.user import AccessContext, ApplicationUser, UserRole
from taskhub.repositories.user_repository import UserRepository
from taskhub.services.base import BaseService
from taskhub.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_USERS = [
    # (username, email, first name, last name, role)
    ('test_admin', 'test_admin@example.com', 'Test', 'Admin', UserRole.ADMIN),
    ('test_client', 'test_client@example.com', 'Test', 'Client', UserRole.CLIENT),
]

class UserService(BaseService):
    """Users, roles and access contexts."""

    def create_user(self, user: ApplicationUser, roles: Iterable[UserRole] = ()) -> ApplicationUser:
        """
        Create a user with the given role memberships.

        Args:
            user: User to create
            roles: Roles granted immediately

        Returns:
            The stored user

        Raises:
            ValidationError: If the user fails validation
            InvalidOperationError: If the username or email is already taken
        """
        user.ensure_valid()
        with self._atomic('create user') as conn:
            repo = UserRepository(conn)
            if repo.identity_taken(user.username, user.email):
                raise InvalidOperationError(f"Username or email already in use: {user.username}")
            repo.insert(user)
            for role in roles:
                repo.add_role(user.id, role)

        logger.info(f"Created user {user.username} ({user.id})")
        return user

    def get_user(self, user_id: str) -> ApplicationUser:
        with self._reading() as conn:
            user = UserRepository(conn).get(user_id)
        if user is None:
            raise NotFoundError('User', user_id)
        return user

    def list_users(self) -> List[ApplicationUser]:
        with self._reading() as conn:
            return UserRepository(conn).list_all()

    def add_to_role(self, user_id: str, role: UserRole) -> None:
        with self._atomic('add role') as conn:
            repo = UserRepository(conn)
            if not repo.exists(user_id):
                raise NotFoundError('User', user_id)
            repo.add_role(user_id, role)
        logger.info(f"Added user {user_id} to role {role.value}")

    def is_in_role(self, user_id: str, role: UserRole) -> bool:
        with self._reading() as conn:
            return UserRepository(conn).has_role(user_id, role)

    def get_roles(self, user_id: str) -> Set[UserRole]:
        with self._reading() as conn:
            return UserRepository(conn).roles(user_id)

    def access_context(self, user_id: str) -> AccessContext:
        """
        Capability summary for the acting user.

        Raises:
            NotFoundError: If the user does not exist
        """
        with self._reading() as conn:
            repo = UserRepository(conn)
            if not repo.exists(user_id):
                raise NotFoundError('User', user_id)
            return AccessContext(user_id=user_id, is_admin=repo.has_role(user_id, UserRole.ADMIN))

    def seed_defaults(self) -> List[ApplicationUser]:
        """
        Make sure the default accounts exist.

        Returns:
            Users created by this call (empty when all were present)
        """
        created = []
        with self._atomic('seed default users') as conn:
            repo = UserRepository(conn)
            for username, email, first_name, last_name, role in DEFAULT_USERS:
                existing = repo.get_by_username(username)
                if existing is not None:
                    repo.add_role(existing.id, role)
                    continue
                user = ApplicationUser(username=username, email=email, first_name=first_name, last_name=last_name)
                repo.insert(user)
                repo.add_role(user.id, role)
                created.append(user)

        if created:
            logger.info(f"Seeded {len(created)} default users: {', '.join(u.username for u in created)}")
        else:
            logger.debug("Default users already present")
        return created
