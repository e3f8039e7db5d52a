"""Tests for TenantScopedRepository: exact tenant subsets and uniform denial."""

from __future__ import annotations

import pytest
from school_core.access.scoped import TenantScopedRepository, row_to_dict
from school_core.errors import AccessDenied


async def _seed_students(session, context, names):
    repo = TenantScopedRepository(session, "students", context)
    return [await repo.create({"name": name}) for name in names]


class TestTenantIsolation:
    """Rows returned are exactly the caller's school's rows."""

    @pytest.mark.asyncio
    async def test_list_returns_only_own_school(self, session, make_school, make_member):
        school_a = await make_school("A")
        school_b = await make_school("B")
        owner_a = await make_member(school_a.id, "owner")
        owner_b = await make_member(school_b.id, "owner")
        await _seed_students(session, owner_a, ["Ana", "Abe"])
        await _seed_students(session, owner_b, ["Bo"])

        rows_a = await TenantScopedRepository(session, "students", owner_a).list()
        rows_b = await TenantScopedRepository(session, "students", owner_b).list()

        assert sorted(r.name for r in rows_a) == ["Abe", "Ana"]
        assert {r.school_id for r in rows_a} == {school_a.id}
        assert [r.name for r in rows_b] == ["Bo"]

    @pytest.mark.asyncio
    async def test_foreign_row_is_indistinguishable_from_missing(self, session, make_school, make_member):
        school_a = await make_school("A")
        school_b = await make_school("B")
        owner_a = await make_member(school_a.id, "owner")
        receptionist_b = await make_member(school_b.id, "receptionist")
        (student,) = await _seed_students(session, owner_a, ["Ana"])
        repo_b = TenantScopedRepository(session, "students", receptionist_b)

        with pytest.raises(AccessDenied) as foreign:
            await repo_b.get(student.id)
        with pytest.raises(AccessDenied) as missing:
            await repo_b.get(987654)

        assert str(foreign.value) == str(missing.value) == "Access denied"

    @pytest.mark.asyncio
    async def test_foreign_row_cannot_be_mutated(self, session, make_school, make_member):
        school_a = await make_school("A")
        school_b = await make_school("B")
        owner_a = await make_member(school_a.id, "owner")
        owner_b = await make_member(school_b.id, "owner")
        (student,) = await _seed_students(session, owner_a, ["Ana"])
        repo_b = TenantScopedRepository(session, "students", owner_b)

        with pytest.raises(AccessDenied):
            await repo_b.update(student.id, {"name": "Hijacked"})
        with pytest.raises(AccessDenied):
            await repo_b.delete(student.id)

        assert (await TenantScopedRepository(session, "students", owner_a).get(student.id)).name == "Ana"

    @pytest.mark.asyncio
    async def test_create_cannot_target_other_school(self, session, make_school, make_member):
        school_a = await make_school("A")
        school_b = await make_school("B")
        owner_a = await make_member(school_a.id, "owner")

        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "students", owner_a).create({"name": "X", "school_id": school_b.id})

    @pytest.mark.asyncio
    async def test_update_ignores_tenant_column(self, session, make_school, make_member):
        school_a = await make_school("A")
        school_b = await make_school("B")
        owner_a = await make_member(school_a.id, "owner")
        (student,) = await _seed_students(session, owner_a, ["Ana"])

        updated = await TenantScopedRepository(session, "students", owner_a).update(
            student.id, {"school_id": school_b.id, "name": "Ana Maria"}
        )

        assert updated.school_id == school_a.id
        assert updated.name == "Ana Maria"


class TestRoleRestrictedEntities:
    """Financial-class entities are limited to owners and managers."""

    @pytest.mark.asyncio
    async def test_receptionist_scenario(self, session, make_school, make_member):
        school_1 = await make_school("T1")
        school_2 = await make_school("T2")
        owner_1 = await make_member(school_1.id, "owner")
        owner_2 = await make_member(school_2.id, "owner")
        receptionist = await make_member(school_1.id, "receptionist")

        revenue = await TenantScopedRepository(session, "revenue", owner_1).create({"amount": 120, "source": "fees"})
        (student_1,) = await _seed_students(session, owner_1, ["Ana"])
        (student_2,) = await _seed_students(session, owner_2, ["Bo"])

        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "revenue", receptionist).get(revenue.id)
        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "revenue", receptionist).list()

        visible = await TenantScopedRepository(session, "students", receptionist).get(student_1.id)
        assert visible.name == "Ana"

        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "students", receptionist).get(student_2.id)

    @pytest.mark.asyncio
    async def test_manager_reads_payouts(self, session, make_school, make_member):
        school = await make_school()
        owner = await make_member(school.id, "owner")
        manager = await make_member(school.id, "manager")
        teacher = await TenantScopedRepository(session, "teachers", owner).create({"name": "Mr. T"})
        await TenantScopedRepository(session, "teacher_payouts", owner).create(
            {"teacher_id": teacher.id, "amount": 300, "period": "2026-09"}
        )

        rows = await TenantScopedRepository(session, "teacher_payouts", manager).list()

        assert len(rows) == 1
        assert row_to_dict(rows[0])["amount"] == 300.0

    @pytest.mark.asyncio
    async def test_inactive_member_has_no_access(self, session, make_school, make_member):
        school = await make_school()
        former = await make_member(school.id, "owner", active=False)

        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "students", former).list()

    @pytest.mark.asyncio
    async def test_profile_less_caller_has_no_access(self, session):
        with pytest.raises(AccessDenied):
            await TenantScopedRepository(session, "students", None).create({"name": "Ghost"})

    @pytest.mark.asyncio
    async def test_unknown_entity(self, session, make_school, make_member):
        school = await make_school()
        owner = await make_member(school.id, "owner")

        with pytest.raises(AccessDenied):
            TenantScopedRepository(session, "profiles", owner)


class TestCrud:
    @pytest.mark.asyncio
    async def test_delete_and_unknown_columns(self, session, make_school, make_member):
        school = await make_school()
        owner = await make_member(school.id, "owner")
        repo = TenantScopedRepository(session, "students", owner)
        (student,) = await _seed_students(session, owner, ["Ana"])

        with pytest.raises(ValueError, match="Unknown column"):
            await repo.update(student.id, {"shoe_size": 42})

        await repo.delete(student.id)
        assert await repo.list() == []

    @pytest.mark.asyncio
    async def test_row_to_dict(self, session, make_school, make_member):
        school = await make_school()
        owner = await make_member(school.id, "owner")
        (student,) = await _seed_students(session, owner, ["Ana"])

        data = row_to_dict(student)

        assert data["name"] == "Ana"
        assert data["school_id"] == school.id
        assert isinstance(data["created_at"], str)

    @pytest.mark.asyncio
    async def test_malformed_amount_is_a_value_error(self, session, make_school, make_member):
        school = await make_school()
        owner = await make_member(school.id, "owner")
        repo = TenantScopedRepository(session, "revenue", owner)

        with pytest.raises(ValueError, match="Invalid number for amount"):
            await repo.create({"amount": "abc"})

        row = await repo.create({"amount": "12.50"})
        with pytest.raises(ValueError, match="Invalid number for amount"):
            await repo.update(row.id, {"amount": "twelve"})
