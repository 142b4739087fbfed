"""
Pluralization - English noun inflection for entity names

Rule table with an irregular-word dictionary and an uncountable set. With
preserve_case=True the case pattern of the input (UPPER, Title, lower) is
carried over to the result.
"""

from typing import Dict

MAX_WORD_LENGTH = 100

UNCOUNTABLE_NOUNS = frozenset([
    # abstract
    "advice", "information", "knowledge", "wisdom", "intelligence", "evidence",
    "research", "progress", "happiness", "sadness", "luck", "fun",
    # materials
    "water", "air", "oil", "milk", "rice", "bread", "sugar", "salt", "flour",
    "gold", "silver", "iron", "wood", "paper", "glass", "plastic", "cotton", "wool",
    # software
    "software", "hardware", "firmware", "malware", "freeware", "shareware",
    "middleware", "feedback", "bandwidth", "traffic", "spam", "code",
    # general
    "equipment", "furniture", "luggage", "baggage", "clothing", "weather", "news",
    "homework", "housework", "money", "cash", "music", "art", "poetry",
    "literature", "electricity", "heat", "light", "darkness", "space", "time",
    "work", "travel", "accommodation", "scenery", "machinery", "jewelry",
    "rubbish", "garbage", "trash", "stuff",
    # same singular and plural
    "sheep", "fish", "deer", "moose", "swine", "buffalo", "shrimp", "trout",
    "salmon", "squid", "aircraft", "spacecraft", "hovercraft", "series",
    "species", "means", "offspring", "chassis", "corps", "swiss",
])

IRREGULAR_PLURALS: Dict[str, str] = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "tooth": "teeth",
    "foot": "feet",
    "mouse": "mice",
    "goose": "geese",
    "ox": "oxen",
    "leaf": "leaves",
    "life": "lives",
    "knife": "knives",
    "wife": "wives",
    "half": "halves",
    "shelf": "shelves",
    "self": "selves",
    "calf": "calves",
    "loaf": "loaves",
    "potato": "potatoes",
    "tomato": "tomatoes",
    "hero": "heroes",
    "echo": "echoes",
    "embargo": "embargoes",
    "veto": "vetoes",
    "cargo": "cargoes",
    "analysis": "analyses",
    "basis": "bases",
    "crisis": "crises",
    "diagnosis": "diagnoses",
    "hypothesis": "hypotheses",
    "oasis": "oases",
    "parenthesis": "parentheses",
    "synopsis": "synopses",
    "thesis": "theses",
    "criterion": "criteria",
    "phenomenon": "phenomena",
    "datum": "data",
    "medium": "media",
    "curriculum": "curricula",
    "memorandum": "memoranda",
    "stimulus": "stimuli",
    "syllabus": "syllabi",
    "focus": "foci",
    "fungus": "fungi",
    "cactus": "cacti",
    "appendix": "appendices",
    "index": "indices",
    "matrix": "matrices",
    "vertex": "vertices",
    "status": "statuses",
    "quiz": "quizzes",
    "bus": "buses",
    "gas": "gases",
    "lens": "lenses",
    "atlas": "atlases",
    "iris": "irises",
    "plus": "pluses",
    "minus": "minuses",
    "bonus": "bonuses",
    "campus": "campuses",
    "caucus": "caucuses",
    "census": "censuses",
    "citrus": "citruses",
    "circus": "circuses",
    "corpus": "corpora",
    "genus": "genera",
    "radius": "radii",
    "nexus": "nexuses",
    "sinus": "sinuses",
    "surplus": "surpluses",
    "virus": "viruses",
}

IRREGULAR_SINGULARS: Dict[str, str] = {plural: singular for singular, plural in IRREGULAR_PLURALS.items()}

VOWELS = "aeiou"


def _apply_case_pattern(original: str, result: str) -> str:
    if not original:
        return result
    if original == original.upper() and any(c.isalpha() for c in original):
        return result.upper()
    if original[0] == original[0].upper() and original[1:] == original[1:].lower():
        return result[:1].upper() + result[1:]
    return result


def _finish(word: str, result: str, preserve_case: bool) -> str:
    return _apply_case_pattern(word, result) if preserve_case else result


def is_uncountable(word: str) -> bool:
    return word.lower() in UNCOUNTABLE_NOUNS


def pluralize(word: str, preserve_case: bool = False) -> str:
    """Plural form of a singular noun. Words already plural are returned as-is."""
    if not word:
        return ""
    if len(word) > MAX_WORD_LENGTH:
        return word

    lower = word.lower()

    if lower in UNCOUNTABLE_NOUNS:
        return word if preserve_case else lower
    if lower in IRREGULAR_PLURALS:
        return _finish(word, IRREGULAR_PLURALS[lower], preserve_case)
    if lower in IRREGULAR_SINGULARS:
        return word if preserve_case else lower

    # already plural (class needs -es, so -ss is excluded)
    if lower.endswith("s") and not lower.endswith("ss"):
        return word if preserve_case else lower

    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in VOWELS:
        return _finish(word, lower[:-1] + "ies", preserve_case)

    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return _finish(word, lower + "es", preserve_case)

    if lower.endswith("f") and not lower.endswith(("ff", "ief", "oof", "eef")):
        return _finish(word, lower[:-1] + "ves", preserve_case)

    if lower.endswith("fe"):
        return _finish(word, lower[:-2] + "ves", preserve_case)

    if lower.endswith("o") and len(lower) > 1 and lower[-2] not in VOWELS:
        return _finish(word, lower + "es", preserve_case)

    return _finish(word, lower + "s", preserve_case)


def singularize(word: str, preserve_case: bool = False) -> str:
    """Singular form of a plural noun. Uncountable and irregular singular nouns map to themselves."""
    if not word:
        return ""
    if len(word) > MAX_WORD_LENGTH:
        return word

    lower = word.lower()

    if lower in UNCOUNTABLE_NOUNS:
        return word if preserve_case else lower
    if lower in IRREGULAR_SINGULARS:
        return _finish(word, IRREGULAR_SINGULARS[lower], preserve_case)
    # bus, status, analysis... are already singular
    if lower in IRREGULAR_PLURALS:
        return word if preserve_case else lower

    if lower.endswith("ies") and len(lower) > 3:
        return _finish(word, lower[:-3] + "y", preserve_case)

    if lower.endswith("ves"):
        stem = lower[:-3]
        result = stem + "f" if stem.endswith(("l", "r", "n", "a", "o")) else stem + "fe"
        return _finish(word, result, preserve_case)

    if lower.endswith("zzes"):
        return _finish(word, lower[:-2], preserve_case)

    if lower.endswith("es"):
        stem = lower[:-2]
        if stem.endswith(("ss", "x", "z", "ch", "sh", "o")):
            return _finish(word, stem, preserve_case)
        if stem.endswith("s"):
            return _finish(word, stem, preserve_case)

    if lower.endswith("s") and len(lower) > 1 and not lower.endswith("ss"):
        return _finish(word, lower[:-1], preserve_case)

    return word if preserve_case else lower


def get_singular_plural(word: str) -> Dict[str, str]:
    """Both forms of a word given in either number."""
    if not word:
        return {"singular": "", "plural": ""}

    lower = word.lower()
    if lower in UNCOUNTABLE_NOUNS:
        return {"singular": lower, "plural": lower}
    if lower in IRREGULAR_SINGULARS:
        return {"singular": IRREGULAR_SINGULARS[lower], "plural": lower}
    if lower in IRREGULAR_PLURALS:
        return {"singular": lower, "plural": IRREGULAR_PLURALS[lower]}

    singular = singularize(lower)
    return {"singular": singular, "plural": pluralize(singular)}
