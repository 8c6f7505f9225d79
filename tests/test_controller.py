"""Tests for UI state, gating and the action dispatcher."""
import asyncio

import pytest

from models import (
    Tab, Language, StoryType, Tense, KanjiDetails,
    SwitchTab, SetLanguage, SetField, ExtractWords, GenerateStory, CommonWords,
    LookupKanji, StrokeGesture, UndoStroke, ClearDrawing, RecognizeDrawing,
    SelectCandidate, Reset,
)
from llm import TransportError, SchemaError
from controller import (
    AppState, ViewController, snapshot,
    can_extract, can_generate_story, can_search, can_recognize,
)
from strokes import StrokeRecorder

NEKO_REPLY = """1. 猫、ねこ、chat
2. が、が、particule
3. 好き、すき、aimer
4. です、です、copule"""


def run(controller, state, action):
    return asyncio.run(controller.dispatch(state, action))


def details(kanji="水"):
    return KanjiDetails(kanji=kanji, onyomi="スイ", kunyomi="みず", meaning="eau",
                        jishoLink=f"https://jisho.org/search/{kanji}%20%23kanji")


def stroke(points, size=150.0, cont=False):
    return StrokeGesture(type="stroke", display_width=size, display_height=size,
                         points=points, continue_stroke=cont)


# --- Gating ---

@pytest.mark.parametrize("gate", [can_extract, can_generate_story, can_search])
@pytest.mark.parametrize("text", ["", "   ", "hello", "ねこがすき", "カタカナ"])
def test_gates_reject_empty_and_kanji_free_input(gate, text):
    assert gate(text) is False


@pytest.mark.parametrize("text", ["猫a", "水1", "Tokyo東京"])
def test_search_gate_rejects_ascii_alphanumerics(text):
    assert can_extract(text) is True
    assert can_search(text) is False


def test_gates_accept_kanji_input():
    assert can_extract("猫が好きです")
    assert can_generate_story("1. 猫、ねこ、chat")
    assert can_search("水")


def test_recognize_gate_needs_a_stroke():
    assert not can_recognize(StrokeRecorder())
    assert can_recognize(StrokeRecorder.from_strokes([[(0, 0)]]))


# --- Review tab ---

def test_extract_words_scenario(make_gateway):
    gw = make_gateway(replies=[NEKO_REPLY])
    vc, state = ViewController(gw), AppState()
    run(vc, state, SetField(type="set_field", field="input_text", value="猫が好きです"))

    assert run(vc, state, ExtractWords(type="extract_words")) is True

    raws = [w.raw for w in state.review.words_a]
    assert any("猫" in r for r in raws)
    assert "が" not in raws and "です" not in raws
    assert state.review.list_a.startswith("1. 猫、ねこ、chat")
    assert state.review.loading_a is False
    prompt = gw.calls[0][1]
    assert "猫が好きです" in prompt and "French" in prompt


def test_extract_words_is_gated(make_gateway):
    gw = make_gateway(replies=[NEKO_REPLY])
    vc, state = ViewController(gw), AppState()
    state.review.input_text = "ねこがすき"
    assert run(vc, state, ExtractWords(type="extract_words")) is False
    assert gw.calls == []


def test_duplicate_submission_is_ignored_while_loading(make_gateway):
    gw = make_gateway(replies=[NEKO_REPLY])
    vc, state = ViewController(gw), AppState()
    state.review.input_text = "猫"
    state.review.loading_a = True
    assert run(vc, state, ExtractWords(type="extract_words")) is False
    assert gw.calls == []


def test_extract_failure_clears_loading(make_gateway):
    gw = make_gateway(replies=[TransportError("down")])
    vc, state = ViewController(gw), AppState()
    state.review.input_text = "猫"
    assert run(vc, state, ExtractWords(type="extract_words")) is True
    assert state.review.loading_a is False
    assert state.review.list_a == ""


def test_extract_empty_reply_leaves_no_result(make_gateway):
    gw = make_gateway(replies=[""])
    vc, state = ViewController(gw), AppState()
    state.review.input_text = "猫"
    run(vc, state, ExtractWords(type="extract_words"))
    assert state.review.list_a == ""
    assert state.review.words_a == []


def test_story_then_vocabulary_in_sequence(make_gateway):
    story = "**猫**が**好き**です。\n毎日**猫**と遊びます。"
    gw = make_gateway(replies=[story, "1. 毎日、まいにち、chaque jour\n2. 遊ぶ、あそぶ、jouer"])
    vc, state = ViewController(gw), AppState(language=Language.EN)
    run(vc, state, SetField(type="set_field", field="list_a", value="1. 猫、ねこ、cat\n2. 好き、すき、like"))
    run(vc, state, SetField(type="set_field", field="story_type", value="fantasy"))
    run(vc, state, SetField(type="set_field", field="tense", value="past"))

    assert run(vc, state, GenerateStory(type="generate_story")) is True

    r = state.review
    assert r.generated_text == story
    assert [w.raw for w in r.words_b] == ["毎日", "遊ぶ"]
    assert not (r.loading_story or r.loading_b)

    story_call, vocab_call = gw.calls
    assert "猫" in story_call[1] and "好き" in story_call[1]
    assert "ファンタジー物語" in story_call[1] and "過去形" in story_call[1]
    assert story_call[2] == {"temperature": 0.2, "top_k": 2, "top_p": 0.4}
    assert "毎日猫と遊びます" in vocab_call[1]
    assert "**" not in vocab_call[1].split("Text to analyse:")[1]


def test_story_kept_when_vocabulary_step_fails(make_gateway):
    gw = make_gateway(replies=["**猫**がいます。", SchemaError("bad")])
    vc, state = ViewController(gw), AppState()
    state.review.list_a = "1. 猫、ねこ、chat"
    run(vc, state, GenerateStory(type="generate_story"))
    assert state.review.generated_text == "**猫**がいます。"
    assert state.review.list_b == ""
    assert not (state.review.loading_story or state.review.loading_b)


def test_empty_story_skips_vocabulary_step(make_gateway):
    gw = make_gateway(replies=[""])
    vc, state = ViewController(gw), AppState()
    state.review.list_a = "1. 猫、ねこ、chat"
    run(vc, state, GenerateStory(type="generate_story"))
    assert len(gw.calls) == 1
    assert state.review.generated_text == ""


# --- Search tab ---

def test_common_words(make_gateway):
    gw = make_gateway(replies=["1-水、みず、water\nExample: 水を飲む。"])
    vc, state = ViewController(gw), AppState(language=Language.IT)
    run(vc, state, SetField(type="set_field", field="kanji_ref", value="水"))
    run(vc, state, SetField(type="set_field", field="num_words", value="20"))

    assert run(vc, state, CommonWords(type="common_words")) is True
    assert state.search.list_c.startswith("1-水")
    assert gw.calls[0][2] == {"temperature": 0.3}
    assert "20 most common" in gw.calls[0][1]
    assert "Italian" in gw.calls[0][1]


def test_search_rejects_alphanumeric_input(make_gateway):
    gw = make_gateway()
    vc, state = ViewController(gw), AppState()
    state.search.kanji_ref = "水a"
    assert run(vc, state, CommonWords(type="common_words")) is False
    assert run(vc, state, LookupKanji(type="kanji_details")) is False
    assert gw.calls == []


def test_kanji_details_uses_first_kanji(make_gateway):
    gw = make_gateway(structured=[details("水")])
    vc, state = ViewController(gw), AppState()
    state.search.kanji_ref = "お水"
    run(vc, state, LookupKanji(type="kanji_details"))
    assert state.search.details.onyomi == "スイ"
    assert gw.calls[0][2]["reference_char"] == "水"
    assert gw.calls[0][2]["schema"] is KanjiDetails


def test_kanji_details_failure(make_gateway):
    gw = make_gateway(structured=[SchemaError("nope")])
    vc, state = ViewController(gw), AppState()
    state.search.kanji_ref = "水"
    run(vc, state, LookupKanji(type="kanji_details"))
    assert state.search.details is None
    assert state.search.loading_details is False


@pytest.mark.parametrize("field,value", [
    ("num_words", 15), ("num_words", "ten"), ("story_type", "epic"), ("tense", 3),
    ("kanji_ref", "水" * 11), ("input_text", "猫" * 2001),
])
def test_set_field_rejects_out_of_range_values(field, value):
    vc, state = ViewController(None), AppState()
    assert run(vc, state, SetField(type="set_field", field=field, value=value)) is False


# --- Draw tab ---

def test_stroke_is_rescaled_to_surface():
    vc, state = ViewController(None), AppState()
    run(vc, state, stroke([[0, 0], [75, 75], [150, 150]]))
    assert state.draw.recorder.strokes == (((0.0, 0.0), (150.0, 150.0), (300.0, 300.0)),)


def test_continue_modifier_joins_strokes():
    vc, state = ViewController(None), AppState()
    run(vc, state, stroke([[0, 0], [50, 50]]))
    run(vc, state, stroke([[100, 50]], cont=True))
    assert state.draw.recorder.strokes[1] == ((100.0, 100.0), (200.0, 100.0))


def test_undo_and_clear_drawing():
    vc, state = ViewController(None), AppState()
    run(vc, state, stroke([[0, 0], [10, 10]]))
    run(vc, state, stroke([[20, 20]]))
    run(vc, state, UndoStroke(type="undo_stroke"))
    assert len(state.draw.recorder) == 1
    run(vc, state, ClearDrawing(type="clear_drawing"))
    assert len(state.draw.recorder) == 0
    assert run(vc, state, UndoStroke(type="undo_stroke")) is True


def test_switching_tabs_keeps_the_drawing():
    vc, state = ViewController(None), AppState(active_tab=Tab.DRAW)
    run(vc, state, stroke([[10, 10], [40, 60]]))
    run(vc, state, stroke([[70, 20], [70, 120]]))
    before = snapshot(state)["draw"]["strokes"]

    run(vc, state, SwitchTab(type="switch_tab", tab=Tab.REVIEW))
    run(vc, state, SwitchTab(type="switch_tab", tab=Tab.DRAW))

    assert snapshot(state)["draw"]["strokes"] == before
    assert len(before) == 2


def test_recognize_drawing(make_gateway):
    gw = make_gateway(image_replies=["日, 目, 白, 日"])
    vc, state = ViewController(gw), AppState()
    run(vc, state, stroke([[10, 10], [100, 100]]))

    assert run(vc, state, RecognizeDrawing(type="recognize_drawing")) is True

    assert state.draw.candidates == ["日", "目", "白"]
    kind, _, kwargs = gw.calls[0]
    assert kind == "image"
    assert kwargs["image_bytes"].startswith(b"\x89PNG")


def test_recognize_requires_strokes(make_gateway):
    gw = make_gateway(image_replies=["日"])
    vc, state = ViewController(gw), AppState()
    assert run(vc, state, RecognizeDrawing(type="recognize_drawing")) is False
    assert gw.calls == []


def test_recognize_without_candidates_leaves_list_empty(make_gateway):
    gw = make_gateway(image_replies=["I cannot tell."])
    vc, state = ViewController(gw), AppState()
    run(vc, state, stroke([[10, 10]]))
    run(vc, state, RecognizeDrawing(type="recognize_drawing"))
    assert state.draw.candidates == []
    assert state.draw.loading_candidates is False


def test_select_candidate_fetches_details(make_gateway):
    gw = make_gateway(structured=[details("目")])
    vc, state = ViewController(gw), AppState()
    state.draw.candidates = ["日", "目"]
    run(vc, state, SelectCandidate(type="select_candidate", kanji="目"))
    assert state.draw.selected == "目"
    assert state.draw.details.kanji == "目"
    assert gw.calls[0][2]["reference_char"] == "目"


# --- Reset and language ---

def test_reset_only_touches_active_tab():
    vc, state = ViewController(None), AppState(active_tab=Tab.SEARCH)
    state.review.input_text = "猫"
    state.review.list_a = "1. 猫、ねこ、chat"
    state.search.kanji_ref = "水"
    state.search.num_words = 20
    state.search.list_c = "..."
    state.search.details = details()
    run(vc, state, stroke([[1, 1]]))

    run(vc, state, Reset(type="reset"))

    assert state.search.kanji_ref == "" and state.search.num_words == 10
    assert state.search.list_c == "" and state.search.details is None
    assert state.review.input_text == "猫"
    assert len(state.draw.recorder) == 1


def test_reset_review_keeps_story_parameters():
    vc, state = ViewController(None), AppState()
    state.review.story_type = StoryType.CONVERSATION
    state.review.tense = Tense.FUTURE
    state.review.generated_text = "話"
    run(vc, state, Reset(type="reset"))
    assert state.review.generated_text == ""
    assert state.review.story_type == StoryType.CONVERSATION


def test_language_changes_ui_and_prompt_label(make_gateway):
    gw = make_gateway(replies=[NEKO_REPLY])
    vc, state = ViewController(gw), AppState()
    run(vc, state, SetLanguage(type="set_language", language=Language.DE))
    state.review.input_text = "猫"
    run(vc, state, ExtractWords(type="extract_words"))
    assert snapshot(state)["ui"]["langName"] == "Deutsch"
    assert "German" in gw.calls[0][1]


# --- Background flows ---

async def settle():
    for _ in range(10):
        await asyncio.sleep(0)


def hold_replies(gateway, count):
    """Make ``gateway.complete`` wait on one event per call, in call order."""
    holds = [asyncio.Event() for _ in range(count)]
    waiting = list(holds)
    answer = gateway.complete

    async def held_complete(prompt_text, **kwargs):
        await waiting.pop(0).wait()
        return await answer(prompt_text, **kwargs)

    gateway.complete = held_complete
    return holds


def test_submit_returns_while_the_story_is_being_written(make_gateway):
    story = "**猫**がいます。"

    async def scenario():
        gw = make_gateway(replies=[story, "1. 猫、ねこ、chat"])
        holds = hold_replies(gw, 2)
        vc, state = ViewController(gw), AppState()
        state.review.list_a = "1. 猫、ねこ、chat"

        assert await vc.submit(state, GenerateStory(type="generate_story")) is True
        assert state.review.loading_story is True
        assert snapshot(state)["review"]["can_generate"] is False
        assert await vc.submit(state, GenerateStory(type="generate_story")) is False
        assert vc.in_flight == 1

        holds[0].set()
        await settle()
        # story is on screen while its vocabulary is still loading
        assert state.review.generated_text == story
        assert state.review.loading_story is False
        assert state.review.loading_b is True
        assert await vc.submit(state, GenerateStory(type="generate_story")) is False

        holds[1].set()
        await settle()
        assert [w.raw for w in state.review.words_b] == ["猫"]
        assert state.review.loading_b is False
        assert vc.in_flight == 0

    asyncio.run(scenario())


def test_submit_reports_gated_flows_at_once(make_gateway):
    async def scenario():
        gw = make_gateway(replies=[NEKO_REPLY])
        vc, state = ViewController(gw), AppState()
        assert await vc.submit(state, ExtractWords(type="extract_words")) is False
        assert await vc.submit(state, SwitchTab(type="switch_tab", tab=Tab.DRAW)) is True
        assert state.active_tab == Tab.DRAW
        assert vc.in_flight == 0
        assert gw.calls == []

    asyncio.run(scenario())


def test_generate_story_is_refused_while_vocabulary_loads(make_gateway):
    gw = make_gateway(replies=["**猫**がいます。"])
    vc, state = ViewController(gw), AppState()
    state.review.list_a = "1. 猫、ねこ、chat"
    state.review.loading_b = True
    assert run(vc, state, GenerateStory(type="generate_story")) is False
    assert gw.calls == []
    assert snapshot(state)["review"]["can_generate"] is False


def test_reset_draw_tab_clears_drawing_and_results():
    vc, state = ViewController(None), AppState(active_tab=Tab.DRAW)
    run(vc, state, stroke([[10, 10], [40, 60]]))
    state.draw.candidates = ["日", "目"]
    state.draw.selected = "目"
    state.draw.details = details("目")
    state.review.input_text = "猫"

    run(vc, state, Reset(type="reset"))

    d = snapshot(state)["draw"]
    assert d["strokes"] == [] and d["candidates"] == []
    assert d["selected"] is None and d["details"] is None
    assert d["can_recognize"] is False
    assert state.review.input_text == "猫"
