"""Prompt templates sent to the model. Pure functions, no I/O."""
from typing import Sequence

from models import StoryType, Tense, STORY_TYPE_LABELS, TENSE_LABELS


def extract_words_prompt(text: str, language_label: str) -> str:
    return f"""You are an expert Japanese linguist. Analyse the text below and extract only the words or lexical units (compounds, nouns, verb and adjective stems) that contain at least one kanji.

Word-listing method:
- A word is a unit of language written with one or more kanji, optionally completed by the kana (okurigana) that belong to the unit (e.g. 食べる).
- Segment along natural boundaries: a single kanji or a kanji group plus its adjacent okurigana forming one unit of meaning.
- Ignore sequences written only in hiragana or katakana (particles, isolated endings).
- List the words in their order of appearance in the text.
- Each word appears only ONCE in the list (remove duplicates).
- For each unit give the exact form (with kanji), the reading in hiragana and a short translation in {language_label}.
- Final check: every kanji of the reference text must appear in at least one listed word.

Expected format: numbered Markdown list, one word per line, "1. Word、Reading、Translation".

Text to analyse:
{text}"""


def generate_story_prompt(words: Sequence[str], story_type: StoryType, tense: Tense,
                          language_label: str) -> str:
    word_list = "、".join(words)
    return f"""You are an expert in the Japanese language. Write a new short text for a student learning Japanese whose native language is {language_label}.

Constraints:
- Story style: {STORY_TYPE_LABELS[story_type]}
- Verb tense: {TENSE_LABELS[tense]}
- Use EVERY word of the following list at least once: {word_list}
- The text must be different from any text given before but must make logical sense.
- At most 20 sentences.
- Each sentence starts on a new line.
- Japanese punctuation only.
- Keywords taken from the list must be in BOLD (format **word**).
- Do not put the hiragana reading after the words in the text.
- Country names in katakana, except Japan which is written 日本.

Answer directly with the Japanese text only."""


def common_words_prompt(kanji: str, count: int, language_label: str) -> str:
    return f"""You are an expert Japanese linguist. Write your whole answer in {language_label}, except for the Japanese words and sentences.
Starting from the reference kanji "{kanji}", list the {count} most common Japanese words containing this kanji.

Strict output format (follow the dashes and commas exactly):
Introduction: "Here are the {count} most common words containing the kanji {kanji}, with their main meanings and a simple usage example. Examples are given in Japanese, then in {language_label}."

Structure of each word:
X-Word、Reading in hiragana、Translation(s)
Example: [Sentence in Japanese]、Reading in hiragana→ [Translation in {language_label}]

Use Japanese punctuation in the example sentences. Do not write any text outside this structure."""


def kanji_details_prompt(kanji: str, language_label: str) -> str:
    return f"""Give the details of the kanji "{kanji}".
Return the on'yomi in katakana, the kun'yomi in hiragana, a short meaning in {language_label} and the jisho.org link for this kanji.
Fill only the requested fields, with no introduction or explanation."""


def recognize_strokes_prompt() -> str:
    return ("The attached image is a hand-drawn Japanese kanji. "
            "List the 10 kanji that most plausibly match the drawing, ordered from best to worst match, "
            "separated by commas. Output only the kanji, nothing else.")
