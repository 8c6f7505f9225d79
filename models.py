"""Pydantic schemas, enums, constants, and locale data for Rengu."""
from enum import Enum
from typing import Annotated, Literal, List, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Constants ---
MAX_INPUT_LEN = 2000
MAX_KANJI_INPUT_LEN = 10
MAX_WORD_LIST_LEN = 4000
WORD_COUNTS = (10, 20)
JISHO_DOMAIN = "jisho.org"


class StoryType(str, Enum):
    MODERN = "modern"
    FANTASY = "fantasy"
    CONVERSATION = "conversation"


class Tense(str, Enum):
    PAST = "past"
    PRESENT = "present"
    FUTURE = "future"


class Language(str, Enum):
    FR = "fr"
    EN = "en"
    ES = "es"
    IT = "it"
    DE = "de"
    PL = "pl"
    PT = "pt"


class Tab(str, Enum):
    REVIEW = "review"
    SEARCH = "search"
    DRAW = "draw"


# Labels shown in the selects and sent to the model inside prompts
STORY_TYPE_LABELS = {
    StoryType.MODERN: "現代の物語",
    StoryType.FANTASY: "ファンタジー物語",
    StoryType.CONVERSATION: "会話",
}

TENSE_LABELS = {
    Tense.PAST: "過去形",
    Tense.PRESENT: "現在形",
    Tense.FUTURE: "未来形",
}

# Language name written into prompts
SUPPORTED_LANGUAGES = {
    Language.FR: "French",
    Language.EN: "English",
    Language.ES: "Spanish",
    Language.IT: "Italian",
    Language.DE: "German",
    Language.PL: "Polish",
    Language.PT: "Portuguese",
}

UI_STRINGS = {
    Language.FR: {
        "langName": "Français", "title": "Révisons les kanji ensemble",
        "btnSend": "Envoyer", "btnGenerate": "Générer l'histoire", "btnReset": "Réinitialiser",
        "generating": "Génération en cours...", "extractedWords": "Mots extraits",
        "wordsToReview": "Mots à réviser", "newStory": "Nouvelle histoire",
        "commonWordsWith": "Mots courants avec", "btnUndo": "Annuler le trait",
    },
    Language.EN: {
        "langName": "English", "title": "Let's review kanji together",
        "btnSend": "Send", "btnGenerate": "Generate story", "btnReset": "Reset",
        "generating": "Generating...", "extractedWords": "Extracted words",
        "wordsToReview": "Words to review", "newStory": "New story",
        "commonWordsWith": "Common words with", "btnUndo": "Undo stroke",
    },
    Language.ES: {
        "langName": "Español", "title": "Repasemos los kanji juntos",
        "btnSend": "Enviar", "btnGenerate": "Generar historia", "btnReset": "Reiniciar",
        "generating": "Generando...", "extractedWords": "Palabras extraídas",
        "wordsToReview": "Palabras para repasar", "newStory": "Nueva historia",
        "commonWordsWith": "Palabras comunes con", "btnUndo": "Deshacer trazo",
    },
    Language.IT: {
        "langName": "Italiano", "title": "Ripassiamo i kanji insieme",
        "btnSend": "Invia", "btnGenerate": "Genera storia", "btnReset": "Ripristina",
        "generating": "Generazione in corso...", "extractedWords": "Parole estratte",
        "wordsToReview": "Parole da ripassare", "newStory": "Nuova storia",
        "commonWordsWith": "Parole comuni con", "btnUndo": "Annulla tratto",
    },
    Language.DE: {
        "langName": "Deutsch", "title": "Lass uns Kanji wiederholen",
        "btnSend": "Senden", "btnGenerate": "Geschichte erzeugen", "btnReset": "Zurücksetzen",
        "generating": "Wird erzeugt...", "extractedWords": "Extrahierte Wörter",
        "wordsToReview": "Wörter zum Wiederholen", "newStory": "Neue Geschichte",
        "commonWordsWith": "Häufige Wörter mit", "btnUndo": "Strich rückgängig",
    },
    Language.PL: {
        "langName": "Polski", "title": "Powtórzmy razem kanji",
        "btnSend": "Wyślij", "btnGenerate": "Generuj historię", "btnReset": "Resetuj",
        "generating": "Generowanie...", "extractedWords": "Wyodrębnione słowa",
        "wordsToReview": "Słowa do powtórki", "newStory": "Nowa historia",
        "commonWordsWith": "Częste słowa z", "btnUndo": "Cofnij kreskę",
    },
    Language.PT: {
        "langName": "Português", "title": "Vamos revisar kanji juntos",
        "btnSend": "Enviar", "btnGenerate": "Gerar história", "btnReset": "Reiniciar",
        "generating": "Gerando...", "extractedWords": "Palavras extraídas",
        "wordsToReview": "Palavras para revisar", "newStory": "Nova história",
        "commonWordsWith": "Palavras comuns com", "btnUndo": "Desfazer traço",
    },
}


def jisho_fallback_link(kanji: str) -> str:
    return f"https://{JISHO_DOMAIN}/search/{kanji}%20%23kanji"


# --- Records produced from model output ---

class WordEntry(BaseModel):
    raw: str
    reading: str = ""
    meaning: str = ""


class KanjiDetails(BaseModel):
    """Structured kanji card. Field aliases are the wire names the model sees."""
    model_config = ConfigDict(populate_by_name=True)

    kanji: str = ""
    onyomi: str
    kunyomi: str
    meaning: str
    jisho_link: str = Field(default="", alias="jishoLink")


# --- Dispatcher actions ---

class SwitchTab(BaseModel):
    type: Literal["switch_tab"]
    tab: Tab


class SetLanguage(BaseModel):
    type: Literal["set_language"]
    language: Language


class SetField(BaseModel):
    type: Literal["set_field"]
    field: Literal["input_text", "list_a", "story_type", "tense", "kanji_ref", "num_words"]
    value: Union[str, int]


class ExtractWords(BaseModel):
    type: Literal["extract_words"]


class GenerateStory(BaseModel):
    type: Literal["generate_story"]


class CommonWords(BaseModel):
    type: Literal["common_words"]


class LookupKanji(BaseModel):
    type: Literal["kanji_details"]


Coordinate = Annotated[float, Field(allow_inf_nan=False)]


class StrokeGesture(BaseModel):
    """One pointer-down..pointer-up gesture in displayed (CSS) pixel space."""
    type: Literal["stroke"]
    display_width: float = Field(gt=0, allow_inf_nan=False)
    display_height: float = Field(gt=0, allow_inf_nan=False)
    points: List[List[Coordinate]]
    continue_stroke: bool = False

    @field_validator("points")
    @classmethod
    def _points_are_pairs(cls, v):
        if not v:
            raise ValueError("a stroke needs at least one point")
        for p in v:
            if len(p) != 2:
                raise ValueError("points must be [x, y] pairs")
        return v


class UndoStroke(BaseModel):
    type: Literal["undo_stroke"]


class ClearDrawing(BaseModel):
    type: Literal["clear_drawing"]


class RecognizeDrawing(BaseModel):
    type: Literal["recognize_drawing"]


class SelectCandidate(BaseModel):
    type: Literal["select_candidate"]
    kanji: str = Field(min_length=1, max_length=1)


class Reset(BaseModel):
    type: Literal["reset"]


Action = Annotated[
    Union[
        SwitchTab, SetLanguage, SetField, ExtractWords, GenerateStory,
        CommonWords, LookupKanji, StrokeGesture, UndoStroke, ClearDrawing,
        RecognizeDrawing, SelectCandidate, Reset,
    ],
    Field(discriminator="type"),
]


class DispatchRequest(BaseModel):
    action: Action


class DispatchResponse(BaseModel):
    accepted: bool
    scroll_top: bool = False
    state: dict
