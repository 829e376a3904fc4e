"""Tests for persisted record types."""

from chatrelay.models import (
    ROLE_AI,
    ROLE_USER,
    Conversation,
    CustomizationProfile,
    Message,
    User,
)


class TestMessage:
    def test_api_role_mapping(self):
        ai = Message(id="1", conversation_id="c", role=ROLE_AI, response="x")
        human = Message(id="2", conversation_id="c", role=ROLE_USER, response="x")
        assert ai.api_role == "assistant"
        assert human.api_role == "user"

    def test_row_round_trip(self):
        msg = Message(id="1", conversation_id="c", role=ROLE_USER, response="hi", model_name="m")
        assert Message.from_row(msg.to_row()) == msg

    def test_created_at_defaults(self):
        assert Message(id="1", conversation_id="c", role=ROLE_USER, response="x").created_at


class TestConversation:
    def test_updated_at_defaults_to_created_at(self):
        conv = Conversation(id="c", profile_id="p")
        assert conv.updated_at == conv.created_at

    def test_row_round_trip(self):
        conv = Conversation(id="c", profile_id="p", summary="s", is_temporary_chat=True)
        assert Conversation.from_row(conv.to_row()) == conv


class TestUser:
    def test_from_row_without_key(self):
        user = User.from_row(("u", "a@b.c", 3, 1, 0, "p", "2025-01-01T00:00:00"))
        assert user.is_premium is True
        assert user.provider_key is None


class TestCustomizationProfile:
    def test_from_dict_drops_blank_traits(self):
        custom = CustomizationProfile.from_dict({"name": "", "traits": ["a", " ", "b"]})
        assert custom.name is None
        assert custom.traits == ["a", "b"]

    def test_from_dict_ignores_non_list_traits(self):
        assert CustomizationProfile.from_dict({"traits": "oops"}).traits == []

    def test_from_row_parses_traits_json(self):
        custom = CustomizationProfile.from_row(("N", None, '["x"]', None))
        assert custom == CustomizationProfile(name="N", traits=["x"])
