import json

import pytest

from core.errors import (
    InvalidCorrelationId,
    MalformedMessage,
    MissingCorrelationId,
    ProtocolError,
    UnknownMethod,
    UnsupportedMessage,
)
from core.protocol import decode_request, encode_command, parse_correlation_id
from models.models import (
    ConnectionInfo,
    Deliver,
    DeliverCommand,
    Failure,
    IrcMessage,
    Quit,
    RegisterCommandRequest,
    ReportPidRequest,
    SendRequest,
    Success,
)


def _info():
    return ConnectionInfo(
        address="irc.example.net", nickname="bot", username="botuser",
        chans=["#chan", "#other"],
    )


def test_decode_send():
    req = decode_request(
        '{"method":"send","params":["irc.example.net","PRIVMSG #chan :hi"],"id":7}'
    )
    assert req == SendRequest("irc.example.net", "PRIVMSG #chan :hi", 7)


def test_decode_cmdadd_from_bytes():
    req = decode_request(b'{"method":"cmdadd","params":["weather"],"id":2}')
    assert req == RegisterCommandRequest("weather", 2)


def test_decode_pid_ignores_id():
    assert decode_request('{"method":"pid","params":["4242"],"id":null}') == ReportPidRequest(4242)
    assert decode_request('{"method":"pid","params":["17"],"id":1.5}') == ReportPidRequest(17)


@pytest.mark.parametrize("method,params", [
    ("send", ["irc.example.net", "hi"]),
    ("cmdadd", ["weather"]),
])
def test_missing_id_is_typed_error(method, params):
    line = json.dumps({"method": method, "params": params, "id": None})
    with pytest.raises(MissingCorrelationId):
        decode_request(line)


def test_integral_float_id_accepted():
    req = decode_request('{"method":"cmdadd","params":["x"],"id":3.0}')
    assert req.request_id == 3
    assert isinstance(req.request_id, int)


@pytest.mark.parametrize("raw_id", [1.5, "7", True, [1], {"n": 1}])
def test_non_integral_or_non_numeric_id_rejected(raw_id):
    line = json.dumps({"method": "send", "params": ["a", "b"], "id": raw_id})
    with pytest.raises(InvalidCorrelationId):
        decode_request(line)


def test_parse_correlation_id_rejects_infinity():
    with pytest.raises(InvalidCorrelationId):
        parse_correlation_id(float("inf"))


def test_unknown_method():
    with pytest.raises(UnknownMethod) as exc:
        decode_request('{"method":"join","params":["#chan"],"id":1}')
    assert exc.value.method == "join"


def test_response_shape_is_unsupported():
    with pytest.raises(UnsupportedMessage):
        decode_request('{"result":"ok","error":null,"id":1}')


@pytest.mark.parametrize("line", [
    "{not json",
    "[1, 2]",
    '{"method":"send","params":["a","b"]}',
    '{"method":5,"params":[],"id":1}',
    '{"method":"send","params":"a b","id":1}',
    '{"method":"send","params":["only-one"],"id":1}',
    '{"method":"send","params":["a", 2],"id":1}',
    '{"method":"cmdadd","params":[],"id":1}',
    '{"method":"pid","params":["12ab"],"id":null}',
    '{"method":"pid","params":[12],"id":null}',
])
def test_malformed_messages(line):
    with pytest.raises(MalformedMessage):
        decode_request(line)


def test_all_decode_errors_are_protocol_errors():
    for line in ("{", '{"method":"nope","params":[],"id":1}',
                 '{"method":"send","params":["a","b"],"id":null}'):
        with pytest.raises(ProtocolError):
            decode_request(line)


HUGE_NUMBER = "9" * 5000


@pytest.mark.parametrize("line", [
    '{"method":"pid","params":["' + HUGE_NUMBER + '"],"id":null}',
    '{"method":"pid","params":["' + "1" * 21 + '"],"id":null}',
    '{"method":"send","params":[' + HUGE_NUMBER + ',"x"],"id":1}',
])
def test_huge_numbers_are_malformed(line):
    with pytest.raises(MalformedMessage):
        decode_request(line)


def test_longest_accepted_pid():
    request = decode_request('{"method":"pid","params":["' + "9" * 20 + '"],"id":null}')
    assert request.pid == int("9" * 20)


def test_encode_success_matches_wire_format():
    assert encode_command(Success("Message sent.", 7)) == \
        '{"result":"Message sent.","error":null,"id":7}'


def test_encode_failure():
    assert encode_command(Failure("Server doesn't exist.", 9)) == \
        '{"result":"error","error":"Server doesn\'t exist.","id":9}'


def test_encode_quit():
    assert encode_command(Quit()) == '{"method":"quit","params":[],"id":null}'


def test_deliver_round_trip_through_wire_format():
    event = IrcMessage(nick="alice", chan="#chan", msg="hello\nworld", code="PRIVMSG")
    line = encode_command(Deliver(event, _info()))
    assert "\n" not in line

    decoded = json.loads(line)
    assert decoded["method"] == "recv"
    assert decoded["id"] is None
    assert len(decoded["params"]) == 2
    assert decoded["params"][0]["msg"] == "hello\nworld"
    assert decoded["params"][1] == {
        "address": "irc.example.net",
        "nickname": "bot",
        "username": "botuser",
        "chans": ["#chan", "#other"],
    }


def test_encode_deliver_command():
    event = IrcMessage(msg="|weather paris")
    decoded = json.loads(encode_command(
        DeliverCommand(event, _info(), "|", "weather paris")
    ))
    assert decoded["method"] == "cmd"
    assert decoded["id"] is None
    assert decoded["params"][2:] == ["|", "weather paris"]


def test_encode_rejects_non_command():
    with pytest.raises(TypeError):
        encode_command(SendRequest("a", "b", 1))
