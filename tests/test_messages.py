from messages import DelimitedMessage, JsonMessage, OpaqueMessage, parse_message, system


def test_content_keeps_extra_delimiters():
    message = parse_message("CHAT|room1|U2|Hi|there")

    assert isinstance(message, DelimitedMessage)
    assert (message.type, message.meeting_id, message.sender_id) == ("CHAT", "room1", "U2")
    assert message.content == "Hi|there"


def test_json_with_type_wins():
    message = parse_message('{"type": "WEBRTC_OFFER", "targetUserId": "U2", "sdp": "v=0"}')

    assert isinstance(message, JsonMessage)
    assert message.type == "WEBRTC_OFFER"
    assert message.data["sdp"] == "v=0"


def test_json_without_type_and_short_strings_are_opaque():
    assert isinstance(parse_message('{"hello": "world"}'), OpaqueMessage)
    assert isinstance(parse_message("just some text"), OpaqueMessage)
    assert isinstance(parse_message("CHAT|room1|U2"), OpaqueMessage)
    assert isinstance(parse_message("42"), OpaqueMessage)


def test_empty_content_is_still_four_fields():
    message = parse_message("PING|room1|U1|")
    assert isinstance(message, DelimitedMessage)
    assert message.content == ""


def test_system_format():
    assert system("room1", "HOST_CHANGED", "U2", "U2 is now the host") == \
        "SYSTEM|room1|Server|HOST_CHANGED|U2|U2 is now the host"
