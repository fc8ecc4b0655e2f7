"""Tests for the conversation directory."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from conftest import auth_headers, make_user
from intranet.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from intranet.models.chat import Conversation, ConversationParticipant, Message, utcnow
from intranet.services import conversation_service
from intranet.services.conversation_service import create_conversation, list_for_user


def _send(db, conversation, sender, content, created_at=None):
    message = Message(conversation_id=conversation.id, sender_id=sender.id, content=content)
    if created_at is not None:
        message.created_at = created_at
    db.add(message)
    db.commit()
    return message


class TestCreateDirect:
    def test_second_create_returns_same_conversation(self, db, alice, bob):
        first, existing_first = create_conversation(db, alice.id, "direct", [bob.id])
        second, existing_second = create_conversation(db, alice.id, "direct", [bob.id])

        assert existing_first is False
        assert existing_second is True
        assert second.id == first.id

    def test_other_side_finds_existing(self, db, alice, bob):
        first, _ = create_conversation(db, alice.id, "direct", [bob.id])
        second, existing = create_conversation(db, bob.id, "direct", [alice.id])

        assert existing is True
        assert second.id == first.id

    def test_group_with_same_pair_is_not_a_match(self, db, alice, bob):
        group, _ = create_conversation(db, alice.id, "group", [bob.id], name="Sales team")
        direct, existing = create_conversation(db, alice.id, "direct", [bob.id])

        assert existing is False
        assert direct.id != group.id

    def test_creator_and_target_are_participants(self, db, alice, bob):
        conversation, _ = create_conversation(db, alice.id, "direct", [bob.id, alice.id, bob.id])

        member_ids = {
            user_id
            for (user_id,) in db.query(ConversationParticipant.user_id).filter(
                ConversationParticipant.conversation_id == conversation.id
            )
        }
        assert member_ids == {alice.id, bob.id}
        assert conversation.created_by == alice.id
        assert conversation.name is None

    def test_direct_with_self_is_rejected(self, db, alice):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "direct", [alice.id])

    def test_direct_with_two_targets_is_rejected(self, db, alice, bob, carol):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "direct", [bob.id, carol.id])

    def test_empty_participants_rejected(self, db, alice):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "direct", [])

    def test_unknown_participant_rejected(self, db, alice):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "direct", [9999])
        assert db.query(Conversation).count() == 0

    def test_inactive_participant_rejected(self, db, alice):
        ghost = make_user(db, "Gus", "Gone", is_active=False)
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "direct", [ghost.id])


class TestCreateGroup:
    def test_group_requires_name(self, db, alice, bob):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "group", [bob.id], name="   ")

    def test_group_adds_everyone_once(self, db, alice, bob, carol):
        conversation, existing = create_conversation(
            db, alice.id, "group", [bob.id, carol.id, bob.id, alice.id], name=" Marketing "
        )

        assert existing is False
        assert conversation.name == "Marketing"
        count = db.query(ConversationParticipant).filter(
            ConversationParticipant.conversation_id == conversation.id
        ).count()
        assert count == 3

    def test_unknown_type_rejected(self, db, alice, bob):
        with pytest.raises(ValidationError):
            create_conversation(db, alice.id, "broadcast", [bob.id])

    def test_failed_commit_leaves_nothing_behind(self, db, alice, bob, monkeypatch):
        def failing_commit():
            raise OperationalError("INSERT", {}, Exception("disk full"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(SQLAlchemyError):
            create_conversation(db, alice.id, "group", [bob.id], name="Doomed")
        monkeypatch.undo()

        assert db.query(Conversation).count() == 0
        assert db.query(ConversationParticipant).count() == 0


class TestListForUser:
    def test_display_names_and_metadata(self, db, alice, bob, carol):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        group, _ = create_conversation(db, alice.id, "group", [bob.id, carol.id], name="Ops")
        _send(db, direct, bob, "hi alice")
        _send(db, direct, alice, "hi bob")

        by_id = {item.id: item for item in list_for_user(db, alice.id)}

        assert by_id[direct.id].display_name == "Bob Durand"
        assert by_id[direct.id].message_count == 2
        assert by_id[direct.id].last_message == "hi bob"
        assert by_id[direct.id].unread_count == 1
        assert by_id[group.id].display_name == "Ops"
        assert by_id[group.id].message_count == 0
        assert by_id[group.id].last_message is None
        assert by_id[group.id].last_message_at is None

        bob_view = {item.id: item for item in list_for_user(db, bob.id)}
        assert bob_view[direct.id].display_name == "Alice Martin"

    def test_ordering_pinned_then_recent_then_empty(self, db, alice, bob, carol, admin):
        now = utcnow()
        with_bob, _ = create_conversation(db, alice.id, "direct", [bob.id])
        with_carol, _ = create_conversation(db, alice.id, "direct", [carol.id])
        empty, _ = create_conversation(db, alice.id, "direct", [admin.id])
        pinned, _ = create_conversation(db, alice.id, "group", [bob.id, carol.id], name="Pinned")

        _send(db, with_bob, bob, "older", created_at=now - timedelta(minutes=10))
        _send(db, with_carol, carol, "newer", created_at=now - timedelta(minutes=1))
        _send(db, pinned, bob, "oldest", created_at=now - timedelta(hours=1))
        conversation_service.set_pinned(db, pinned.id, alice.id, True)

        order = [item.id for item in list_for_user(db, alice.id)]

        assert order == [pinned.id, with_carol.id, with_bob.id, empty.id]

    def test_listing_has_no_side_effects(self, db, alice, bob):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        _send(db, direct, bob, "ping")

        first = list_for_user(db, alice.id)
        second = list_for_user(db, alice.id)

        assert first == second
        assert second[0].unread_count == 1


class TestMembership:
    def test_pin_is_per_user(self, db, alice, bob):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        conversation_service.set_pinned(db, direct.id, alice.id, True)

        assert list_for_user(db, alice.id)[0].is_pinned is True
        assert list_for_user(db, bob.id)[0].is_pinned is False

    def test_pin_requires_membership(self, db, alice, bob, carol):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        with pytest.raises(ForbiddenError):
            conversation_service.set_pinned(db, direct.id, carol.id, True)

    def test_leave_only_removes_caller(self, db, alice, bob):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        _send(db, direct, alice, "bye")

        conversation_service.leave_conversation(db, direct.id, bob.id)

        assert list_for_user(db, bob.id) == []
        assert [item.id for item in list_for_user(db, alice.id)] == [direct.id]
        assert db.query(Message).filter(Message.conversation_id == direct.id).count() == 1

    def test_leave_twice_is_not_found(self, db, alice, bob):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        conversation_service.leave_conversation(db, direct.id, bob.id)
        with pytest.raises(NotFoundError):
            conversation_service.leave_conversation(db, direct.id, bob.id)

    def test_missing_conversation_is_not_found(self, db, alice):
        with pytest.raises(NotFoundError):
            conversation_service.require_participant(db, 12345, alice.id)

    def test_contacts_exclude_caller_and_inactive(self, db, alice, bob, carol):
        make_user(db, "Gus", "Gone", is_active=False)
        contacts = conversation_service.list_contacts(db, alice.id)
        assert [user.first_name for user in contacts] == ["Bob", "Carol"]


class TestConversationRoutes:
    def test_direct_dedup_over_http(self, client, alice, bob):
        created = client.post(
            "/messages/conversations",
            json={"type": "direct", "participant_ids": [bob.id]},
            headers=auth_headers(alice),
        )
        assert created.status_code == 201
        assert created.json()["existing"] is False

        matched = client.post(
            "/messages/conversations",
            json={"type": "direct", "participant_ids": [alice.id]},
            headers=auth_headers(bob),
        )
        assert matched.status_code == 200
        assert matched.json()["existing"] is True
        assert matched.json()["conversation"]["id"] == created.json()["conversation"]["id"]

    def test_missing_participants_is_bad_request(self, client, alice):
        response = client.post(
            "/messages/conversations",
            json={"type": "group", "name": "Empty"},
            headers=auth_headers(alice),
        )
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "ValidationError"

    def test_list_pin_and_leave(self, client, alice, bob):
        created = client.post(
            "/messages/conversations",
            json={"type": "direct", "participant_ids": [bob.id]},
            headers=auth_headers(alice),
        ).json()
        conversation_id = created["conversation"]["id"]

        pinned = client.put(
            f"/messages/conversations/{conversation_id}/pin",
            json={"is_pinned": True},
            headers=auth_headers(alice),
        )
        assert pinned.status_code == 200
        assert pinned.json() == {"success": True, "is_pinned": True}

        listing = client.get("/messages/conversations", headers=auth_headers(alice)).json()
        assert listing["conversations"][0]["is_pinned"] is True
        assert listing["conversations"][0]["display_name"] == "Bob Durand"

        left = client.delete(f"/messages/conversations/{conversation_id}", headers=auth_headers(bob))
        assert left.status_code == 200
        assert client.get("/messages/conversations", headers=auth_headers(bob)).json() == {"conversations": []}

    def test_users_endpoint(self, client, alice, bob, carol):
        response = client.get("/messages/users", headers=auth_headers(alice))
        assert response.status_code == 200
        assert [user["id"] for user in response.json()] == [bob.id, carol.id]

    def test_requires_token(self, client):
        assert client.get("/messages/conversations").status_code == 401

    def test_admin_can_delete_conversation(self, client, db, alice, bob, admin):
        direct, _ = create_conversation(db, alice.id, "direct", [bob.id])
        _send(db, direct, alice, "to be removed")
        conversation_id = direct.id

        forbidden = client.delete(f"/admin/conversations/{conversation_id}", headers=auth_headers(alice))
        assert forbidden.status_code == 403

        deleted = client.delete(f"/admin/conversations/{conversation_id}", headers=auth_headers(admin))
        assert deleted.status_code == 200

        db.expire_all()
        assert db.query(Conversation).filter(Conversation.id == conversation_id).count() == 0
        assert db.query(Message).filter(Message.conversation_id == conversation_id).count() == 0
        assert db.query(ConversationParticipant).filter(
            ConversationParticipant.conversation_id == conversation_id
        ).count() == 0
