from lume.services.ui_stream import DONE, MessageBuilder, UIStreamWriter, parse_sse_line, sse


def build(chunks):
    builder = MessageBuilder()
    for chunk in chunks:
        builder.apply(chunk)
    return builder.content_parts()


def test_text_and_reasoning_accumulate_per_part():
    parts = build([
        {"type": "start", "messageId": "msg-1"},
        {"type": "start-step"},
        {"type": "reasoning-start", "id": "reasoning-1"},
        {"type": "reasoning-delta", "id": "reasoning-1", "delta": "hmm"},
        {"type": "reasoning-end", "id": "reasoning-1", "providerMetadata": {"anthropic": {"signature": "s"}}},
        {"type": "text-start", "id": "text-2"},
        {"type": "text-delta", "id": "text-2", "delta": "Hel"},
        {"type": "text-delta", "id": "text-2", "delta": "lo"},
        {"type": "text-end", "id": "text-2"},
        {"type": "finish-step"},
        {"type": "finish"},
    ])
    assert parts == [
        {"type": "step-start"},
        {"type": "reasoning", "text": "hmm", "providerMetadata": {"anthropic": {"signature": "s"}}},
        {"type": "text", "text": "Hello"},
    ]


def test_tool_part_follows_its_states():
    parts = build([
        {"type": "start-step"},
        {"type": "tool-input-start", "toolCallId": "c1", "toolName": "webSearch"},
        {"type": "tool-input-delta", "toolCallId": "c1", "inputTextDelta": '{"query"'},
        {"type": "tool-input-available", "toolCallId": "c1", "toolName": "webSearch", "input": {"query": "q"}},
        {"type": "source-url", "sourceId": "s1", "url": "https://a.example", "title": "A"},
        {"type": "tool-output-available", "toolCallId": "c1", "output": {"results": []}},
        {"type": "tool-input-available", "toolCallId": "c2", "toolName": "webExtract", "input": {"urls": []}},
        {"type": "tool-output-error", "toolCallId": "c2", "errorText": "nope"},
    ])
    assert parts[1] == {
        "type": "tool-webSearch", "toolCallId": "c1", "state": "output-available",
        "input": {"query": "q"}, "output": {"results": []},
    }
    assert parts[2] == {"type": "source-url", "sourceId": "s1", "url": "https://a.example", "title": "A"}
    assert parts[3] == {
        "type": "tool-webExtract", "toolCallId": "c2", "state": "output-error",
        "input": {"urls": []}, "errorText": "nope",
    }


def test_data_parts_update_by_id_and_transient_ones_are_not_kept():
    parts = build([
        {"type": "data-markdown", "id": "artifact-1", "data": {"status": "starting"}},
        {"type": "data-title", "data": {"value": "Title"}, "transient": True},
        {"type": "data-markdown", "id": "artifact-1", "data": {"status": "completed"}},
    ])
    assert parts == [{"type": "data-markdown", "id": "artifact-1", "data": {"status": "completed"}}]


def test_empty_text_and_trailing_step_are_dropped():
    parts = build([
        {"type": "start-step"},
        {"type": "text-start", "id": "t"},
        {"type": "text-end", "id": "t"},
    ])
    assert parts == []


def test_writer_drains_sse_frames():
    writer = UIStreamWriter()
    writer.write({"type": "start"})
    writer.write({"type": "text-start", "id": "t"})
    frames = writer.drain()
    assert frames == ['data: {"type": "start"}\n\n', 'data: {"type": "text-start", "id": "t"}\n\n']
    assert writer.drain() == []
    assert parse_sse_line(frames[1].strip()) == {"type": "text-start", "id": "t"}
    assert parse_sse_line(DONE.strip()) is None
    assert sse({"type": "finish"}).startswith("data: ")


def test_sse_frames_are_always_utf8_encodable():
    frame = sse({"type": "data-markdown", "data": {"content": {"title": "Smile \ud83d"}}})

    frame.encode("utf-8")
    assert "\\ud83d" in frame
    assert parse_sse_line(frame.strip())["data"]["content"]["title"] == "Smile \ud83d"
