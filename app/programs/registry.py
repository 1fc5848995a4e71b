"""
Program Registry: capacity accounting for creator programs.

The capacity counter is the concurrency control primitive of the billing
engine. Two checkouts racing for the last slot of a program both issue

    UPDATE programs_program
       SET current_clients = current_clients + 1
     WHERE id = %s AND is_active
       AND (max_clients IS NULL OR current_clients < max_clients)

and the database serializes them on the row: exactly one sees an affected
row count of 1. There is no read-then-write anywhere in this module.

Release is the mirror image, floored at zero. The registry cannot tell which
subscription a slot belongs to, so callers guarantee at-most-once release
through Subscription.slot_held, flipped in the same transaction.

Usage:
    from programs.registry import ProgramRegistry

    result = ProgramRegistry.reserve_slot(program.id)
    if not result.success:
        return result  # CAPACITY_EXCEEDED or PROGRAM_UNAVAILABLE
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from django.db.models import F, Q
from django.utils import timezone

from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult
from programs.models import Program


@dataclass(frozen=True)
class Reservation:
    """Token proving one slot of a program was claimed."""

    program_id: uuid.UUID
    reserved_at: datetime


class ProgramRegistry(BaseService):
    """Read access to programs and atomic slot accounting."""

    @classmethod
    def get_program(cls, program_id: uuid.UUID | str) -> Program:
        """
        Fetch an active program.

        Raises:
            NotFoundError: Program does not exist or is deactivated
        """
        try:
            return Program.objects.get(pk=program_id, is_active=True)
        except (Program.DoesNotExist, ValueError, TypeError):
            raise NotFoundError(
                "Program not found",
                error_code="PROGRAM_NOT_FOUND",
                details={"program_id": str(program_id)},
            )

    @classmethod
    def reserve_slot(
        cls, program_id: uuid.UUID, *, require_active: bool = True
    ) -> ServiceResult[Reservation]:
        """
        Claim one slot if the program has capacity.

        Args:
            program_id: Program to reserve in
            require_active: False lets an already-paid confirmation claim a
                slot in a program deactivated after checkout began. Capacity
                is still enforced.

        Returns:
            ServiceResult with a Reservation, or failure with
            CAPACITY_EXCEEDED / PROGRAM_UNAVAILABLE
        """
        programs = Program.objects.filter(pk=program_id).filter(
            Q(max_clients__isnull=True) | Q(current_clients__lt=F("max_clients"))
        )
        if require_active:
            programs = programs.filter(is_active=True)

        now = timezone.now()
        updated = programs.update(
            current_clients=F("current_clients") + 1,
            updated_at=now,
        )

        if updated:
            cls.get_logger().info(
                "Reserved program slot",
                extra={"program_id": str(program_id)},
            )
            return ServiceResult.success(
                Reservation(program_id=program_id, reserved_at=now)
            )

        available = Program.objects.filter(pk=program_id)
        if require_active:
            available = available.filter(is_active=True)
        if not available.exists():
            return ServiceResult.failure(
                "Program is not available",
                error_code="PROGRAM_UNAVAILABLE",
            )

        cls.get_logger().info(
            "Program at capacity, reservation refused",
            extra={"program_id": str(program_id)},
        )
        return ServiceResult.failure(
            "Program has no open slots",
            error_code="CAPACITY_EXCEEDED",
        )

    @classmethod
    def release_slot(cls, program_id: uuid.UUID) -> bool:
        """
        Return one slot to the program, never going below zero.

        Returns:
            True if the counter was decremented
        """
        updated = Program.objects.filter(
            pk=program_id, current_clients__gt=0
        ).update(
            current_clients=F("current_clients") - 1,
            updated_at=timezone.now(),
        )

        if updated:
            cls.get_logger().info(
                "Released program slot",
                extra={"program_id": str(program_id)},
            )
        else:
            cls.get_logger().warning(
                "Slot release found counter already at zero",
                extra={"program_id": str(program_id)},
            )
        return bool(updated)

    @classmethod
    def correct_client_count(cls, program_id: uuid.UUID, held_slots: int) -> bool:
        """
        Overwrite the counter with an audited value.

        Only the capacity audit calls this, inside a transaction holding the
        program row lock, after counting slot_held subscriptions.
        """
        updated = (
            Program.objects.filter(pk=program_id)
            .exclude(current_clients=held_slots)
            .update(current_clients=held_slots, updated_at=timezone.now())
        )
        return bool(updated)
