"""Link submissions to user accounts by identifier hash."""

import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_table_columns
from app.models.users import FORM_USER_ROLE, User
from app.services import data_sanitizer, encryption
from app.services.migrations.errors import ConfigurationError, MigrationError
from app.services.migrations.strategies.base import (
    SUBMISSIONS,
    BatchResult,
    MigrationConfig,
    MigrationStatus,
    count_where,
    is_present,
)

logger = logging.getLogger(__name__)

NAME_KEYS = ("nome_completo", "nome", "name", "full_name", "ffc_nome")

REQUIRED_COLUMNS = ("user_id", "cpf_rf_hash", "email_encrypted")


def _unlinked():
    return and_(is_present(SUBMISSIONS.c.cpf_rf_hash), SUBMISSIONS.c.user_id.is_(None))


class UserLinkMigrationStrategy:
    """
    Resolve or create the account behind each identifier hash.

    Records are processed oldest first. An identifier hash is resolved once
    per batch (reusing an existing link when one exists, otherwise matching
    or creating an account by decrypted email) and every unlinked record
    sharing that hash is then updated in one final pass. When one email
    would tie two different identifier hashes to the same account, all
    records involved are skipped and reported instead of merged.
    """

    name = "User Link Migration Strategy"

    def __init__(self, db: AsyncSession):
        self.db = db

    async def calculate_status(self, key: str, config: MigrationConfig) -> MigrationStatus:
        total = await count_where(self.db, SUBMISSIONS, is_present(SUBMISSIONS.c.cpf_rf_hash))
        migrated = await count_where(
            self.db,
            SUBMISSIONS,
            is_present(SUBMISSIONS.c.cpf_rf_hash),
            SUBMISSIONS.c.user_id.is_not(None),
        )
        return MigrationStatus.from_counts(total, migrated)

    async def can_run(self, key: str, config: MigrationConfig) -> Optional[MigrationError]:
        if not encryption.is_configured():
            return ConfigurationError(
                "Encryption must be configured to read submission emails",
                code="encryption_not_configured",
            )
        columns = await get_table_columns(self.db, SUBMISSIONS.name)
        missing = [c for c in REQUIRED_COLUMNS if c not in columns]
        if missing:
            return ConfigurationError(
                f"Missing columns: {', '.join(missing)}. Run the encryption migration first.",
                code="missing_column",
            )
        return None

    async def _existing_links(self, hashes: Set[str]) -> Dict[str, int]:
        result = await self.db.execute(
            select(SUBMISSIONS.c.cpf_rf_hash, SUBMISSIONS.c.user_id)
            .where(SUBMISSIONS.c.cpf_rf_hash.in_(hashes), SUBMISSIONS.c.user_id.is_not(None))
            .order_by(SUBMISSIONS.c.created_at, SUBMISSIONS.c.id)
        )
        links: Dict[str, int] = {}
        for cpf_hash, user_id in result.all():
            links.setdefault(cpf_hash, user_id)
        return links

    async def _users_by_email(self, emails: Set[str]) -> Dict[str, User]:
        if not emails:
            return {}
        result = await self.db.execute(select(User).where(func.lower(User.email).in_(emails)))
        return {user.email.lower(): user for user in result.scalars().all()}

    async def _linked_hashes(self, user_id: int) -> Set[str]:
        result = await self.db.execute(
            select(SUBMISSIONS.c.cpf_rf_hash)
            .where(SUBMISSIONS.c.user_id == user_id, is_present(SUBMISSIONS.c.cpf_rf_hash))
            .distinct()
        )
        return {row[0] for row in result.all()}

    @staticmethod
    def _display_name(data_encrypted: Optional[str]) -> Optional[str]:
        payload = data_sanitizer.clean_json_data(encryption.decrypt(data_encrypted))
        name = data_sanitizer.extract_field(payload, NAME_KEYS)
        if name is None:
            return None
        return data_sanitizer.sanitize_text(name) or None

    async def _resolve_user(self, email: str, data_encrypted: Optional[str]) -> User:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email))
        user = result.scalars().first()
        if user is not None:
            if not user.has_role(FORM_USER_ROLE):
                user.roles = list(user.roles or []) + [FORM_USER_ROLE]
            await self.db.commit()
            return user

        display_name = self._display_name(data_encrypted)
        user = User(
            email=email,
            username=email,
            display_name=display_name or email,
            first_name=display_name.split()[0] if display_name else None,
            roles=[FORM_USER_ROLE],
            capabilities={},
        )
        self.db.add(user)
        await self.db.commit()
        logger.info(f"Created user {user.id} from submission data")
        return user

    async def _next_page(self, after: Optional[tuple], limit: int):
        query = select(
            SUBMISSIONS.c.id,
            SUBMISSIONS.c.created_at,
            SUBMISSIONS.c.cpf_rf_hash,
            SUBMISSIONS.c.email_encrypted,
            SUBMISSIONS.c.data_encrypted,
        ).where(_unlinked())
        if after is not None:
            created_at, record_id = after
            query = query.where(
                or_(
                    SUBMISSIONS.c.created_at > created_at,
                    and_(SUBMISSIONS.c.created_at == created_at, SUBMISSIONS.c.id > record_id),
                )
            )
        result = await self.db.execute(query.order_by(SUBMISSIONS.c.created_at, SUBMISSIONS.c.id).limit(limit))
        return result.mappings().all()

    @staticmethod
    def _linkable(rows, resolved: Dict[str, int], candidates: Dict[str, dict], conflicted: Set[str]) -> int:
        return sum(
            1
            for row in rows
            if row["cpf_rf_hash"] in resolved
            or (row["cpf_rf_hash"] in candidates and row["cpf_rf_hash"] not in conflicted)
        )

    async def execute(self, key: str, config: MigrationConfig, batch_index: int = 0) -> BatchResult:
        rows = await self._next_page(None, config.batch_size)
        if not rows:
            return BatchResult(True, 0, False, "No submissions to link")

        errors: List[str] = []
        scanned: List = []
        resolved: Dict[str, int] = {}
        # First unresolved record per hash decides the email for that hash
        candidates: Dict[str, dict] = {}
        conflicted: Set[str] = set()

        # Skipped records stay unlinked, so scan past them with a cursor local
        # to this call until a batch worth of records can be linked
        exhausted = True
        while rows:
            scanned.extend(rows)
            new_hashes = {row["cpf_rf_hash"] for row in rows} - set(resolved)
            if new_hashes:
                resolved.update(await self._existing_links(new_hashes))

            for row in rows:
                cpf_hash = row["cpf_rf_hash"]
                if cpf_hash in resolved or cpf_hash in candidates:
                    continue
                email = (encryption.decrypt(row["email_encrypted"]) or "").strip().lower()
                if not data_sanitizer.is_valid_email(email):
                    errors.append(f"Submission {row['id']}: no readable email to resolve a user")
                    continue
                candidates[cpf_hash] = {"email": email, "data_encrypted": row["data_encrypted"]}

            conflicted = await self._find_conflicts(candidates)
            if self._linkable(scanned, resolved, candidates, conflicted) >= config.batch_size:
                exhausted = False
                break
            last = rows[-1]
            rows = await self._next_page((last["created_at"], last["id"]), config.batch_size)

        for row in scanned:
            if row["cpf_rf_hash"] in conflicted:
                errors.append(
                    f"Submission {row['id']}: email is shared with a different CPF/RF, skipped"
                )

        if config.dry_run:
            would_link = self._linkable(scanned, resolved, candidates, conflicted)
            return BatchResult(True, would_link, False, f"Would link {would_link} submissions", errors=errors)

        for cpf_hash, candidate in candidates.items():
            if cpf_hash in conflicted:
                continue
            try:
                user = await self._resolve_user(candidate["email"], candidate["data_encrypted"])
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error(f"User resolution failed: {e}")
                errors.append(f"Failed to resolve user for identifier hash {cpf_hash[:8]}: {e}")
                continue
            resolved[cpf_hash] = user.id

        processed = 0
        try:
            for cpf_hash, user_id in resolved.items():
                updated = await self.db.execute(
                    update(SUBMISSIONS)
                    .where(SUBMISSIONS.c.cpf_rf_hash == cpf_hash, SUBMISSIONS.c.user_id.is_(None))
                    .values(user_id=user_id)
                )
                processed += updated.rowcount or 0
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"User link bulk update failed: {e}")
            return BatchResult(False, 0, False, f"Failed to link submissions: {e}", errors=errors + [str(e)])

        remaining = await count_where(self.db, SUBMISSIONS, _unlinked())
        logger.info(
            f"User link: linked {processed} submissions to {len(resolved)} users, "
            f"{len(errors)} skipped, {remaining} pending"
        )
        return BatchResult(
            success=not errors,
            processed=processed,
            has_more=processed > 0 and remaining > 0 and not exhausted,
            message=f"Linked {processed} submissions to {len(resolved)} users",
            errors=errors,
            details={"users": len(resolved), "conflicts": len(conflicted), "remaining": remaining},
        )

    async def _find_conflicts(self, candidates: Dict[str, dict]) -> Set[str]:
        """Hashes whose email maps to more than one identifier hash."""
        by_email: Dict[str, Set[str]] = defaultdict(set)
        for cpf_hash, candidate in candidates.items():
            by_email[candidate["email"]].add(cpf_hash)

        users = await self._users_by_email(set(by_email))
        conflicted: Set[str] = set()
        for email, hashes in by_email.items():
            owner = users.get(email)
            known = set(hashes)
            if owner is not None:
                known |= await self._linked_hashes(owner.id)
            if len(known) > 1:
                conflicted |= hashes
        return conflicted

