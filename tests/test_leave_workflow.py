import uuid
from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from app.api.v1.leaves import service
from app.api.v1.leaves.schemas import LeaveApply, LeaveUpdate
from app.core.enums import AuditAxis, LeaveDecision, MentorStatus, ParentStatus, SecurityStatus
from app.core.exceptions import ErrorCode, ServiceError
from app.core.models import LeaveAuditLog, LeaveRequest, SystemSetting


def _apply_payload(**overrides) -> LeaveApply:
    data = dict(
        leave_type="Medical",
        from_date=date(2024, 1, 10),
        to_date=date(2024, 1, 12),
        reason="Fever",
        parent_email="p@x.com",
    )
    data.update(overrides)
    return LeaveApply(**data)


async def _audit_actions(db, leave_id):
    rows = await db.execute(select(LeaveAuditLog.action).where(LeaveAuditLog.leave_request_id == leave_id))
    return sorted(a for (a,) in rows.all())


@pytest.mark.asyncio
async def test_apply_then_parent_reject_consumes_token(db_session, campus, notifier, clock, parent_token):
    leave = await service.apply_leave(
        db_session, campus.student.external_uid, _apply_payload(), notifier=notifier, clock=clock
    )
    assert leave.parent_status == ParentStatus.PENDING
    assert leave.mentor_status == MentorStatus.PENDING
    assert leave.security_status == SecurityStatus.NONE
    assert leave.student_roll_number == "21CS001"

    token = await parent_token(leave.id)
    assert token
    parent_mail = notifier.sent_to("p@x.com")
    assert len(parent_mail) == 1
    assert f"/parent-response/{token}" in parent_mail[0]["body"]

    rejected = await service.parent_action(db_session, token, LeaveDecision.REJECT, notifier=notifier, clock=clock)
    assert rejected.parent_status == ParentStatus.REJECTED
    assert rejected.mentor_status == MentorStatus.REJECTED_BY_PARENT
    assert await parent_token(leave.id) is None

    with pytest.raises(ServiceError) as exc:
        await service.parent_action(db_session, token, LeaveDecision.APPROVE, notifier=notifier, clock=clock)
    assert exc.value.code == ErrorCode.TOKEN_INVALID_OR_CONSUMED

    student_mail = notifier.sent_to(campus.student.email)
    assert len(student_mail) == 1
    assert "REJECTED (By Parent)" in student_mail[0]["body"]
    assert await _audit_actions(db_session, leave.id) == ["APPLIED", "PARENT_REJECTED"]


@pytest.mark.asyncio
async def test_parent_approve_keeps_mentor_pending(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    assert leave.parent_status == ParentStatus.APPROVED
    assert leave.mentor_status == MentorStatus.PENDING
    # Parent approval alone tells the student nothing
    assert notifier.sent_to(campus.student.email) == []


@pytest.mark.asyncio
async def test_parent_view_only_while_token_live(db_session, campus, notifier, clock, leave_factory, parent_token):
    leave = await leave_factory()
    token = await parent_token(leave.id)

    view = await service.get_leave_by_token(db_session, token)
    assert view.id == leave.id
    assert view.student_name == "Arjun Das"

    await service.parent_action(db_session, token, LeaveDecision.APPROVE, notifier=notifier, clock=clock)
    with pytest.raises(ServiceError) as exc:
        await service.get_leave_by_token(db_session, token)
    assert exc.value.code == ErrorCode.TOKEN_INVALID_OR_CONSUMED


@pytest.mark.asyncio
async def test_unknown_token_is_rejected(db_session, campus, notifier, clock):
    with pytest.raises(ServiceError) as exc:
        await service.parent_action(db_session, "not-a-token", LeaveDecision.APPROVE, notifier=notifier, clock=clock)
    assert exc.value.code == ErrorCode.TOKEN_INVALID_OR_CONSUMED


@pytest.mark.asyncio
async def test_each_request_gets_its_own_token(db_session, campus, leave_factory, parent_token):
    first = await leave_factory()
    second = await leave_factory(from_date=date(2024, 2, 1), to_date=date(2024, 2, 2))
    assert await parent_token(first.id) != await parent_token(second.id)


@pytest.mark.asyncio
async def test_mentor_approval_after_parent(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    approved = await service.mentor_action(
        db_session,
        leave.id,
        campus.mentor.external_uid,
        LeaveDecision.APPROVE,
        "Take care",
        notifier=notifier,
        clock=clock,
    )
    assert approved.mentor_status == MentorStatus.APPROVED
    assert approved.mentor_remarks == "Take care"

    mail = notifier.sent_to(campus.student.email)
    assert len(mail) == 1
    assert "APPROVED" in mail[0]["body"]
    assert "Take care" in mail[0]["body"]
    assert await _audit_actions(db_session, leave.id) == ["APPLIED", "MENTOR_APPROVED", "PARENT_APPROVED"]


@pytest.mark.asyncio
async def test_mentor_rejection(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    rejected = await service.mentor_action(
        db_session, leave.id, campus.mentor.external_uid, LeaveDecision.REJECT, "Exams", notifier=notifier, clock=clock
    )
    assert rejected.mentor_status == MentorStatus.REJECTED
    assert rejected.parent_status == ParentStatus.APPROVED


@pytest.mark.asyncio
async def test_mentor_cannot_act_before_parent(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory()
    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session, leave.id, campus.mentor.external_uid, LeaveDecision.APPROVE, notifier=notifier, clock=clock
        )
    assert exc.value.code == ErrorCode.PARENT_APPROVAL_REQUIRED

    stored = await service.fetch_leave(db_session, leave.id)
    assert stored.mentor_status == MentorStatus.PENDING.value


@pytest.mark.asyncio
async def test_mentor_cannot_act_after_parent_rejection(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.REJECT)
    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session, leave.id, campus.mentor.external_uid, LeaveDecision.APPROVE, notifier=notifier, clock=clock
        )
    assert exc.value.code == ErrorCode.ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_only_assigned_mentor_may_decide(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session,
            leave.id,
            campus.other_mentor.external_uid,
            LeaveDecision.APPROVE,
            notifier=notifier,
            clock=clock,
        )
    assert exc.value.code == ErrorCode.UNAUTHORIZED


@pytest.mark.asyncio
async def test_second_mentor_decision_is_refused(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE, mentor=LeaveDecision.APPROVE)
    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session, leave.id, campus.mentor.external_uid, LeaveDecision.REJECT, notifier=notifier, clock=clock
        )
    assert exc.value.code == ErrorCode.ALREADY_PROCESSED
    assert len(notifier.sent_to(campus.student.email)) == 1

    stored = await service.fetch_leave(db_session, leave.id)
    assert stored.mentor_status == MentorStatus.APPROVED.value


@pytest.mark.asyncio
async def test_unknown_leave_and_mentor(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session, leave.id, "nobody", LeaveDecision.APPROVE, notifier=notifier, clock=clock
        )
    assert exc.value.code == ErrorCode.MENTOR_NOT_FOUND

    with pytest.raises(ServiceError) as exc:
        await service.mentor_action(
            db_session,
            uuid.uuid4(),
            campus.mentor.external_uid,
            LeaveDecision.APPROVE,
            notifier=notifier,
            clock=clock,
        )
    assert exc.value.code == ErrorCode.LEAVE_NOT_FOUND


@pytest.mark.asyncio
async def test_apply_rejects_inverted_dates(db_session, campus, notifier, clock):
    with pytest.raises(ServiceError) as exc:
        await service.apply_leave(
            db_session,
            campus.student.external_uid,
            _apply_payload(from_date=date(2024, 1, 12), to_date=date(2024, 1, 10)),
            notifier=notifier,
            clock=clock,
        )
    assert exc.value.code == ErrorCode.VALIDATION_ERROR
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_apply_requires_a_student(db_session, campus, notifier, clock):
    for uid in ("ghost", campus.mentor.external_uid):
        with pytest.raises(ServiceError) as exc:
            await service.apply_leave(db_session, uid, _apply_payload(), notifier=notifier, clock=clock)
        assert exc.value.code == ErrorCode.STUDENT_NOT_FOUND


@pytest.mark.asyncio
async def test_apply_blocked_when_leave_feature_disabled(db_session, campus, notifier, clock):
    db_session.add(SystemSetting(key="feature.leave.enabled", value="FALSE", updated_at=clock.now()))
    await db_session.commit()

    with pytest.raises(ServiceError) as exc:
        await service.apply_leave(
            db_session, campus.student.external_uid, _apply_payload(), notifier=notifier, clock=clock
        )
    assert exc.value.code == ErrorCode.FEATURE_DISABLED
    count = (await db_session.execute(select(func.count(LeaveRequest.id)))).scalar_one()
    assert count == 0


@pytest.mark.asyncio
async def test_notification_failure_does_not_undo_transition(db_session, campus, notifier, clock, parent_token):
    notifier.fail = True
    leave = await service.apply_leave(
        db_session, campus.student.external_uid, _apply_payload(), notifier=notifier, clock=clock
    )
    assert notifier.sent == []

    token = await parent_token(leave.id)
    assert token is not None
    rejected = await service.parent_action(db_session, token, LeaveDecision.REJECT, notifier=notifier, clock=clock)
    assert rejected.parent_status == ParentStatus.REJECTED


@pytest.mark.asyncio
async def test_update_while_parent_pending(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory()
    clock.advance(timedelta(hours=1))
    updated = await service.update_leave(
        db_session,
        leave.id,
        campus.student.external_uid,
        LeaveUpdate(leave_type="Personal", from_date=date(2024, 1, 11), to_date=date(2024, 1, 13), reason="Wedding"),
        clock=clock,
    )
    assert updated.from_date == date(2024, 1, 11)
    assert updated.reason == "Wedding"
    assert updated.updated_at > leave.updated_at


@pytest.mark.asyncio
async def test_update_refused_once_parent_acted(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE)
    with pytest.raises(ServiceError) as exc:
        await service.update_leave(
            db_session,
            leave.id,
            campus.student.external_uid,
            LeaveUpdate(leave_type="Personal", from_date=date(2024, 1, 11), to_date=date(2024, 1, 13)),
            clock=clock,
        )
    assert exc.value.code == ErrorCode.ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_update_by_other_student_is_unauthorized(db_session, campus, notifier, clock, leave_factory):
    leave = await leave_factory()
    with pytest.raises(ServiceError) as exc:
        await service.update_leave(
            db_session,
            leave.id,
            campus.classmate.external_uid,
            LeaveUpdate(leave_type="Personal", from_date=date(2024, 1, 11), to_date=date(2024, 1, 13)),
            clock=clock,
        )
    assert exc.value.code == ErrorCode.UNAUTHORIZED


@pytest.mark.asyncio
async def test_delete_pending_leave_removes_it_and_its_audit(db_session, campus, leave_factory):
    leave = await leave_factory()
    await service.delete_leave(db_session, leave.id, campus.student.external_uid)

    assert await service.fetch_leave(db_session, leave.id) is None
    assert await _audit_actions(db_session, leave.id) == []


@pytest.mark.asyncio
async def test_delete_refused_after_mentor_approval(db_session, campus, leave_factory):
    leave = await leave_factory(parent=LeaveDecision.APPROVE, mentor=LeaveDecision.APPROVE)
    with pytest.raises(ServiceError) as exc:
        await service.delete_leave(db_session, leave.id, campus.student.external_uid)
    assert exc.value.code == ErrorCode.ALREADY_PROCESSED


@pytest.mark.asyncio
async def test_delete_by_other_student_is_unauthorized(db_session, campus, leave_factory):
    leave = await leave_factory()
    with pytest.raises(ServiceError) as exc:
        await service.delete_leave(db_session, leave.id, campus.classmate.external_uid)
    assert exc.value.code == ErrorCode.UNAUTHORIZED


@pytest.mark.asyncio
async def test_student_list_is_newest_first(db_session, campus, clock, leave_factory):
    first = await leave_factory()
    clock.advance(timedelta(minutes=10))
    second = await leave_factory(from_date=date(2024, 2, 1), to_date=date(2024, 2, 1))
    await leave_factory(student=campus.classmate)

    leaves = await service.list_student_leaves(db_session, campus.student.external_uid)
    assert [leave.id for leave in leaves] == [second.id, first.id]


@pytest.mark.asyncio
async def test_mentor_queue_shows_only_parent_approved(db_session, campus, clock, leave_factory):
    await leave_factory()
    clock.advance(timedelta(minutes=1))
    approved = await leave_factory(parent=LeaveDecision.APPROVE)
    clock.advance(timedelta(minutes=1))
    await leave_factory(parent=LeaveDecision.REJECT)
    await leave_factory(student=campus.classmate)

    queue = await service.list_pending_for_mentor(db_session, campus.mentor.external_uid)
    assert [leave.id for leave in queue] == [approved.id]

    clock.advance(timedelta(minutes=1))
    decided = await leave_factory(parent=LeaveDecision.APPROVE, mentor=LeaveDecision.REJECT)
    queue = await service.list_pending_for_mentor(db_session, campus.mentor.external_uid)
    assert [leave.id for leave in queue] == [decided.id, approved.id]


@pytest.mark.asyncio
async def test_department_view(db_session, campus, leave_factory):
    await leave_factory()
    await leave_factory(student=campus.classmate)
    assert len(await service.list_department_leaves(db_session, "CSE")) == 2
    assert await service.list_department_leaves(db_session, "ECE") == []


@pytest.mark.parametrize(
    "action, axis",
    [
        ("APPLIED", AuditAxis.REQUEST),
        ("UPDATED", AuditAxis.REQUEST),
        ("PARENT_REJECTED", AuditAxis.PARENT),
        ("OTP_ISSUED", AuditAxis.MENTOR),
        ("MENTOR_APPROVED_OTP", AuditAxis.MENTOR),
        ("EXITED", AuditAxis.SECURITY),
    ],
)
def test_audit_axis(action, axis):
    assert service.audit_axis(action) == axis
