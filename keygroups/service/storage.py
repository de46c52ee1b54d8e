"""
Keyed record storage.

Records are only ever read from, and written to, addresses derived by the
`AddressScheme`. Writes are staged on a `UnitOfWork` that names every
address the operation touches before anything is read, and are applied in
a single flush so that the multi-record transitions (membership plus group
counter, invite redemption) either all land or none do.
"""

from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import FlushError
from sqlmodel import SQLModel
from structlog.typing import FilteringBoundLogger

from keygroups.core.addressing import AddressScheme, DerivedAddress
from keygroups.core.errors import AlreadyExists, NotFound

RecordT = TypeVar("RecordT", bound=SQLModel)

# Postgres unique_violation
UNIQUE_VIOLATION_SQLSTATE = "23505"
SQLITE_UNIQUE_ERRORS = frozenset(
    {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}
)


def is_address_collision(error: IntegrityError | FlushError) -> bool:
    """
    Whether a failed flush was caused by a record already living at one of
    the addresses being created, as opposed to any other constraint.
    """
    if isinstance(error, FlushError):
        # The occupying record is already loaded into this session
        return "conflicts with persistent instance" in str(error)

    original = error.orig

    sqlstate = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == UNIQUE_VIOLATION_SQLSTATE

    sqlite_error = getattr(original, "sqlite_errorname", None)
    if sqlite_error is not None:
        return sqlite_error in SQLITE_UNIQUE_ERRORS

    message = str(original)
    return (
        "UNIQUE constraint failed" in message
        or "duplicate key value violates unique constraint" in message
    )


async def read_optional(
    model: type[RecordT],
    address: DerivedAddress,
    scheme: AddressScheme,
    conn: AsyncSession,
    for_update: bool = False,
) -> RecordT | None:
    """
    Read the record of type `model` living at `address`, if any.

    Parameters
    ----------
    model: type[RecordT]
        The table to read from.
    address: DerivedAddress
        The derived location of the record.
    scheme: AddressScheme
        The scheme that derived `address`; used to check the stored proof.
    conn: AsyncSession
        The database session.
    for_update: bool
        Lock the row for the rest of the transaction. Use this for every
        record the operation is going to write.

    Raises
    ------
    InvalidState
        If the stored record does not carry the proof for its address.
    """
    query = select(model).where(model.address == address.key)

    if for_update:
        query = query.with_for_update()

    record = (await conn.execute(query)).scalar_one_or_none()

    if record is None:
        return None

    scheme.verify_record(address, record.address, record.proof)

    return record


async def read(
    model: type[RecordT],
    address: DerivedAddress,
    scheme: AddressScheme,
    conn: AsyncSession,
    for_update: bool = False,
) -> RecordT:
    """
    Same as `read_optional`, but a missing record raises `NotFound`.
    """
    record = await read_optional(
        model=model, address=address, scheme=scheme, conn=conn, for_update=for_update
    )

    if record is None:
        raise NotFound(f"No {model.__name__} at {address.key}")

    return record


class UnitOfWork:
    """
    The writes of one operation. Every address written must be declared at
    construction; records are created at, updated in, or deleted from those
    addresses only.

    uow = UnitOfWork("group.join", actor, group_address, member_address)
    uow.update(group)
    uow.create(member_address, GroupMember(...))
    await uow.commit(conn=conn, log=log)
    """

    action: str
    actor: bytes
    declared: dict[str, DerivedAddress]

    def __init__(self, action: str, actor: bytes, *addresses: DerivedAddress):
        self.action = action
        self.actor = actor
        self.declared = {address.key: address for address in addresses}
        self.created: list[SQLModel] = []
        self.updated: list[SQLModel] = []
        self.deleted: list[tuple[SQLModel, bytes]] = []

    def _check_declared(self, key: str) -> DerivedAddress:
        try:
            return self.declared[key]
        except KeyError:
            raise ValueError(
                f"{self.action} attempted to write undeclared address {key}"
            )

    def create(self, address: DerivedAddress, record: RecordT) -> RecordT:
        """
        Stage a new record at `address`. The commit fails with `AlreadyExists`
        if the address is already occupied.
        """
        declared = self._check_declared(address.key)

        record.address = declared.key
        record.proof = declared.proof

        self.created.append(record)

        return record

    def update(self, record: RecordT) -> RecordT:
        self._check_declared(record.address)
        self.updated.append(record)
        return record

    def delete(self, record: RecordT, refund_to: bytes) -> None:
        """
        Stage the removal of `record`. The storage deposit for the record goes
        back to `refund_to`.
        """
        self._check_declared(record.address)
        self.deleted.append((record, refund_to))

    async def commit(self, conn: AsyncSession, log: FilteringBoundLogger) -> None:
        """
        Apply all staged writes in one flush.

        Raises
        ------
        AlreadyExists
            If any created record's address is already occupied. Nothing else
            in this unit is applied; the enclosing transaction must be rolled
            back (leaving the `conn.begin()` block with the exception does
            this).
        """
        log = log.bind(action=self.action, actor=self.actor.hex())

        conn.add_all(self.created)
        conn.add_all(self.updated)

        for record, _ in self.deleted:
            await conn.delete(record)

        try:
            await conn.flush()
        except (IntegrityError, FlushError) as e:
            if not is_address_collision(e):
                raise
            await log.ainfo(
                "storage.address_occupied",
                addresses=[record.address for record in self.created],
            )
            raise AlreadyExists(
                f"{self.action}: a record already exists at a derived address"
            ) from e

        for record, refund_to in self.deleted:
            await log.ainfo(
                "storage.record_closed",
                address=record.address,
                record_type=type(record).__name__,
                refund_to=refund_to.hex(),
            )
