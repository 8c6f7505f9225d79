"""UI state and the single dispatcher that applies user actions to it.

Each tab owns its fields, result slots and loading flags. A flow runs
``idle -> submitting -> idle``; while its loading flag is set a second
submission of the same flow is ignored. In-flight calls are never cancelled:
a reply that lands after a reset or a newer submission still writes its slot.
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Optional

from log import get_logger

logger = get_logger("rengu.controller")

from models import (
    Tab, Language, StoryType, Tense, WordEntry, KanjiDetails,
    SUPPORTED_LANGUAGES, UI_STRINGS, STORY_TYPE_LABELS, TENSE_LABELS,
    MAX_INPUT_LEN, MAX_KANJI_INPUT_LEN, MAX_WORD_LIST_LEN, WORD_COUNTS,
)
from prompts import (
    extract_words_prompt, generate_story_prompt, common_words_prompt,
    kanji_details_prompt, recognize_strokes_prompt,
)
from llm import (
    GatewayError, EmptyResult,
    has_kanji, has_ascii_alnum, first_kanji, strip_bold,
    parse_word_list, format_word_list, parse_candidates, story_to_html,
)
from strokes import StrokeRecorder, to_surface

# Actions that wait on the model; everything else finishes in one step
MODEL_FLOWS = frozenset({
    "extract_words", "generate_story", "common_words", "kanji_details",
    "recognize_drawing", "select_candidate",
})


# --- Gating predicates ---

def can_extract(text: str) -> bool:
    return bool(text and text.strip()) and has_kanji(text)


def can_generate_story(list_a: str) -> bool:
    return can_extract(list_a)


def can_search(text: str) -> bool:
    return can_extract(text) and not has_ascii_alnum(text)


def can_recognize(recorder: StrokeRecorder) -> bool:
    return len(recorder) > 0


# --- State ---

@dataclass
class ReviewState:
    input_text: str = ""
    list_a: str = ""
    words_a: List[WordEntry] = field(default_factory=list)
    story_type: StoryType = StoryType.MODERN
    tense: Tense = Tense.PRESENT
    generated_text: str = ""
    list_b: str = ""
    words_b: List[WordEntry] = field(default_factory=list)
    loading_a: bool = False
    loading_story: bool = False
    loading_b: bool = False


@dataclass
class SearchState:
    kanji_ref: str = ""
    num_words: int = 10
    list_c: str = ""
    details: Optional[KanjiDetails] = None
    loading_c: bool = False
    loading_details: bool = False


@dataclass
class DrawState:
    recorder: StrokeRecorder = field(default_factory=StrokeRecorder)
    candidates: List[str] = field(default_factory=list)
    selected: Optional[str] = None
    details: Optional[KanjiDetails] = None
    loading_candidates: bool = False
    loading_details: bool = False


@dataclass
class AppState:
    active_tab: Tab = Tab.REVIEW
    language: Language = Language.FR
    review: ReviewState = field(default_factory=ReviewState)
    search: SearchState = field(default_factory=SearchState)
    draw: DrawState = field(default_factory=DrawState)

    @property
    def language_label(self) -> str:
        return SUPPORTED_LANGUAGES[self.language]


def _details_json(details: Optional[KanjiDetails]) -> Optional[dict]:
    return details.model_dump(by_alias=True) if details else None


def snapshot(state: AppState) -> dict:
    """JSON view of the state for the page to render."""
    r, s, d = state.review, state.search, state.draw
    return {
        "active_tab": state.active_tab.value,
        "language": state.language.value,
        "ui": UI_STRINGS[state.language],
        "review": {
            "input_text": r.input_text,
            "list_a": r.list_a,
            "words_a": [w.model_dump() for w in r.words_a],
            "story_type": r.story_type.value,
            "tense": r.tense.value,
            "story_types": {k.value: v for k, v in STORY_TYPE_LABELS.items()},
            "tenses": {k.value: v for k, v in TENSE_LABELS.items()},
            "generated_text": r.generated_text,
            "story_html": story_to_html(r.generated_text),
            "list_b": r.list_b,
            "words_b": [w.model_dump() for w in r.words_b],
            "loading_a": r.loading_a,
            "loading_story": r.loading_story,
            "loading_b": r.loading_b,
            "can_extract": can_extract(r.input_text) and not r.loading_a,
            "can_generate": can_generate_story(r.list_a) and not (r.loading_story or r.loading_b),
        },
        "search": {
            "kanji_ref": s.kanji_ref,
            "num_words": s.num_words,
            "list_c": s.list_c,
            "details": _details_json(s.details),
            "loading_c": s.loading_c,
            "loading_details": s.loading_details,
            "can_search": can_search(s.kanji_ref) and not (s.loading_c or s.loading_details),
        },
        "draw": {
            "strokes": d.recorder.to_json(),
            "width": d.recorder.width,
            "height": d.recorder.height,
            "candidates": d.candidates,
            "selected": d.selected,
            "details": _details_json(d.details),
            "loading_candidates": d.loading_candidates,
            "loading_details": d.loading_details,
            "can_recognize": can_recognize(d.recorder) and not d.loading_candidates,
        },
    }


# --- Dispatcher ---

class ViewController:
    def __init__(self, gateway):
        self.gateway = gateway
        self._handlers = {
            "switch_tab": self._switch_tab,
            "set_language": self._set_language,
            "set_field": self._set_field,
            "extract_words": self._extract_words,
            "generate_story": self._generate_story,
            "common_words": self._common_words,
            "kanji_details": self._kanji_details,
            "stroke": self._stroke,
            "undo_stroke": self._undo_stroke,
            "clear_drawing": self._clear_drawing,
            "recognize_drawing": self._recognize_drawing,
            "select_candidate": self._select_candidate,
            "reset": self._reset,
        }
        self._pending = set()

    async def dispatch(self, state: AppState, action) -> bool:
        """Apply ``action`` to ``state``. Returns False when the action was ignored."""
        return await self._handlers[action.type](state, action)

    async def submit(self, state: AppState, action) -> bool:
        """Like ``dispatch``, but returns once a model flow has started.

        The flow keeps running as a task and clears its loading flag when the
        reply lands, so callers see ``submitting`` in the meantime.
        """
        if action.type not in MODEL_FLOWS:
            return await self.dispatch(state, action)
        task = asyncio.create_task(self.dispatch(state, action))
        self._pending.add(task)
        task.add_done_callback(self._flow_done)
        # one loop turn runs the gate and sets the loading flag
        await asyncio.sleep(0)
        if task.done():
            self._pending.discard(task)
            return task.result()
        return True

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    def _flow_done(self, task: asyncio.Task):
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Flow crashed", exc_info=task.exception(), extra={"component": "controller"})

    def _log_failure(self, flow: str, tab: Tab, e: GatewayError):
        logger.warning(f"{flow} failed", extra={
            "component": "controller", "flow": flow, "tab": tab.value,
            "detail": f"{type(e).__name__}: {e}",
        })

    # -- navigation and fields --

    async def _switch_tab(self, state: AppState, action) -> bool:
        state.active_tab = action.tab
        return True

    async def _set_language(self, state: AppState, action) -> bool:
        state.language = action.language
        return True

    async def _set_field(self, state: AppState, action) -> bool:
        name, value = action.field, action.value
        r, s = state.review, state.search
        try:
            if name == "input_text":
                if len(str(value)) > MAX_INPUT_LEN:
                    return False
                r.input_text = str(value)
            elif name == "list_a":
                if len(str(value)) > MAX_WORD_LIST_LEN:
                    return False
                r.list_a = str(value)
                r.words_a = parse_word_list(r.list_a)
            elif name == "story_type":
                r.story_type = StoryType(value)
            elif name == "tense":
                r.tense = Tense(value)
            elif name == "kanji_ref":
                if len(str(value)) > MAX_KANJI_INPUT_LEN:
                    return False
                s.kanji_ref = str(value)
            elif name == "num_words":
                count = int(value)
                if count not in WORD_COUNTS:
                    return False
                s.num_words = count
        except ValueError:
            return False
        return True

    # -- review tab --

    async def _extract_words(self, state: AppState, action) -> bool:
        tab = state.review
        if tab.loading_a or not can_extract(tab.input_text):
            return False
        tab.loading_a = True
        tab.list_a = ""
        tab.words_a = []
        try:
            text = await self.gateway.complete(extract_words_prompt(tab.input_text, state.language_label))
            words = parse_word_list(text)
            if not words:
                raise EmptyResult("no kanji words in the extraction reply")
            tab.words_a = words
            tab.list_a = format_word_list(words)
        except GatewayError as e:
            self._log_failure("extract_words", Tab.REVIEW, e)
        finally:
            tab.loading_a = False
        return True

    async def _generate_story(self, state: AppState, action) -> bool:
        tab = state.review
        if tab.loading_story or tab.loading_b or not can_generate_story(tab.list_a):
            return False
        words = [w.raw for w in (tab.words_a or parse_word_list(tab.list_a))]
        tab.loading_story = True
        tab.generated_text = ""
        tab.list_b = ""
        tab.words_b = []
        try:
            story = await self.gateway.complete(
                generate_story_prompt(words, tab.story_type, tab.tense, state.language_label),
                temperature=0.2, top_k=2, top_p=0.4,
            )
            if not story.strip():
                raise EmptyResult("story reply was empty")
            tab.generated_text = story.strip()
            tab.loading_story = False

            # Vocabulary of the new story; a failure here keeps the story on screen
            tab.loading_b = True
            text = await self.gateway.complete(
                extract_words_prompt(strip_bold(tab.generated_text), state.language_label))
            words_b = parse_word_list(text)
            if not words_b:
                raise EmptyResult("no kanji words in the story vocabulary reply")
            tab.words_b = words_b
            tab.list_b = format_word_list(words_b)
        except GatewayError as e:
            self._log_failure("generate_story", Tab.REVIEW, e)
        finally:
            tab.loading_story = False
            tab.loading_b = False
        return True

    # -- search tab --

    async def _common_words(self, state: AppState, action) -> bool:
        tab = state.search
        if tab.loading_c or not can_search(tab.kanji_ref):
            return False
        tab.loading_c = True
        tab.list_c = ""
        try:
            text = await self.gateway.complete(
                common_words_prompt(tab.kanji_ref.strip(), tab.num_words, state.language_label),
                temperature=0.3,
            )
            tab.list_c = text.strip()
        except GatewayError as e:
            self._log_failure("common_words", Tab.SEARCH, e)
        finally:
            tab.loading_c = False
        return True

    async def _kanji_details(self, state: AppState, action) -> bool:
        tab = state.search
        if tab.loading_details or not can_search(tab.kanji_ref):
            return False
        kanji = first_kanji(tab.kanji_ref)
        tab.loading_details = True
        tab.details = None
        try:
            tab.details = await self.gateway.complete_structured(
                kanji_details_prompt(kanji, state.language_label), KanjiDetails, reference_char=kanji)
        except GatewayError as e:
            self._log_failure("kanji_details", Tab.SEARCH, e)
        finally:
            tab.loading_details = False
        return True

    # -- draw tab --

    async def _stroke(self, state: AppState, action) -> bool:
        recorder = state.draw.recorder
        points = [
            to_surface(x, y, action.display_width, action.display_height, recorder.width, recorder.height)
            for x, y in action.points
        ]
        if not recorder.begin(points[0], continue_stroke=action.continue_stroke):
            logger.info("Stroke limit reached", extra={"component": "controller", "count": len(recorder)})
            return False
        for point in points[1:]:
            recorder.extend(point)
        recorder.end()
        return True

    async def _undo_stroke(self, state: AppState, action) -> bool:
        state.draw.recorder.undo()
        return True

    async def _clear_drawing(self, state: AppState, action) -> bool:
        state.draw.recorder.reset()
        return True

    async def _recognize_drawing(self, state: AppState, action) -> bool:
        tab = state.draw
        if tab.loading_candidates or not can_recognize(tab.recorder):
            return False
        image = tab.recorder.serialize()
        tab.loading_candidates = True
        tab.candidates = []
        tab.selected = None
        tab.details = None
        try:
            text = await self.gateway.complete_with_image(recognize_strokes_prompt(), image)
            candidates = parse_candidates(text)
            if not candidates:
                raise EmptyResult("recognizer proposed no kanji")
            tab.candidates = candidates
        except GatewayError as e:
            self._log_failure("recognize_drawing", Tab.DRAW, e)
        finally:
            tab.loading_candidates = False
        return True

    async def _select_candidate(self, state: AppState, action) -> bool:
        tab = state.draw
        if tab.loading_details or not has_kanji(action.kanji):
            return False
        tab.selected = action.kanji
        tab.loading_details = True
        tab.details = None
        try:
            tab.details = await self.gateway.complete_structured(
                kanji_details_prompt(action.kanji, state.language_label), KanjiDetails,
                reference_char=action.kanji)
        except GatewayError as e:
            self._log_failure("select_candidate", Tab.DRAW, e)
        finally:
            tab.loading_details = False
        return True

    # -- reset --

    async def _reset(self, state: AppState, action) -> bool:
        """Clear fields and results of the active tab only. Loading flags are left alone."""
        if state.active_tab == Tab.REVIEW:
            r = state.review
            r.input_text = ""
            r.list_a = ""
            r.words_a = []
            r.generated_text = ""
            r.list_b = ""
            r.words_b = []
        elif state.active_tab == Tab.SEARCH:
            s = state.search
            s.kanji_ref = ""
            s.num_words = 10
            s.list_c = ""
            s.details = None
        else:
            d = state.draw
            d.recorder.reset()
            d.candidates = []
            d.selected = None
            d.details = None
        return True
