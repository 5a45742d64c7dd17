"""Per-language word lists used by the style and composition heuristics.

These are deliberately small. They drive scores that are compared against
each other, not grammar checks.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class LanguageProfile:
    code: str
    weak_verbs: tuple[str, ...] = ()
    modifiers: tuple[str, ...] = ()
    modifier_suffix: str = ""
    tell_patterns: tuple[str, ...] = ()
    purple_patterns: tuple[str, ...] = ()
    passive_patterns: tuple[str, ...] = ()
    action_markers: tuple[str, ...] = ()
    info_dump_words: tuple[str, ...] = ()
    inner_markers: tuple[str, ...] = ()
    stop_words: frozenset[str] = field(default_factory=frozenset)


ENGLISH = LanguageProfile(
    code="en",
    weak_verbs=(
        "was", "were", "is", "are", "be", "been", "had", "has", "have",
        "got", "get", "went", "go", "made", "make", "did", "do",
        "seemed", "seems", "looked", "felt", "started", "began",
    ),
    modifiers=(
        "very", "really", "extremely", "quite", "just", "suddenly",
        "totally", "completely", "absolutely", "rather", "somewhat",
        "incredibly", "literally",
    ),
    modifier_suffix="ly",
    tell_patterns=(
        r"\b(?:he|she|they|i|we)\s+(?:felt|was|were)\s+(?:very\s+)?(?:angry|sad|happy|afraid|scared|nervous|excited|furious|anxious|jealous)\b",
        r"\bfelt\s+(?:a\s+)?(?:sense|wave|surge)\s+of\b",
        r"\b(?:could\s+)?(?:see|tell)\s+that\s+(?:he|she|they)\s+(?:was|were)\b",
        r"\bwas\s+(?:obviously|clearly|visibly)\b",
        r"\bin\s+(?:a|an)\s+\w+\s+(?:voice|tone|manner)\b",
    ),
    purple_patterns=(
        r"\b(?:orbs|cerulean|azure|alabaster|porcelain)\b",
        r"\b(?:like\s+a\s+thousand|a\s+symphony\s+of|a\s+tapestry\s+of|dance\s+of)\b",
        r"\b(?:unfathomable|ineffable|indescribable|breathtakingly)\b",
        r"\b(?:heaven\s+and\s+earth\s+trembled|the\s+world\s+stood\s+still)\b",
        r"\b\w+ly,?\s+\w+ly\b",
    ),
    passive_patterns=(
        r"\b(?:was|were|is|are|been|being|be)\s+(?:\w+ly\s+)?\w+ed\b(?:\s+by\b)?",
        r"\b(?:was|were|is|are|been)\s+(?:taken|given|seen|known|shown|thrown|broken|hidden|driven|written|chosen|beaten|forgotten)\b",
    ),
    action_markers=(
        "ran", "struck", "grabbed", "turned", "stepped", "drew", "slammed",
        "lunged", "leapt", "jumped", "swung", "pulled", "pushed", "shouted",
        "dodged", "raised", "charged",
    ),
    info_dump_words=(
        "history", "centuries", "ancient", "according", "legend", "known as",
        "founded", "system", "hierarchy", "ranks", "levels", "realm", "tradition",
        "as everyone knew", "it was said",
    ),
    inner_markers=(
        "thought", "wondered", "realized", "remembered", "wished", "hoped",
        "feared", "knew", "doubted", "asked himself", "asked herself",
        "to himself", "to herself", "in his heart", "in her heart", "his mind",
        "her mind", "couldn't help", "if only",
    ),
    stop_words=frozenset({
        "the", "a", "an", "of", "and", "or", "to", "in", "on", "at", "for",
        "with", "by", "from", "is", "was", "his", "her", "their", "its",
        "chapter", "part",
    }),
)

VIETNAMESE = LanguageProfile(
    code="vi",
    weak_verbs=("là", "có", "được", "bị", "làm", "đi", "cảm thấy", "trông"),
    modifiers=("rất", "quá", "cực kỳ", "vô cùng", "hết sức", "thật sự", "đột nhiên", "hoàn toàn"),
    tell_patterns=(
        r"(?:cảm thấy|thấy)\s+(?:rất\s+)?(?:tức giận|buồn|vui|sợ hãi|lo lắng|hồi hộp)",
        r"(?:rõ ràng|hiển nhiên)\s+là",
    ),
    purple_patterns=(
        r"(?:trời đất rung chuyển|thiên địa biến sắc|vạn vật im lặng)",
        r"(?:như một bản giao hưởng|như ngàn vì sao)",
    ),
    passive_patterns=(r"\b(?:bị|được)\s+\w+",),
    action_markers=("lao", "vung", "chém", "đấm", "né", "xoay", "bước", "nhảy"),
    info_dump_words=("lịch sử", "truyền thuyết", "cổ xưa", "cảnh giới", "tương truyền", "hệ thống"),
    inner_markers=("nghĩ", "thầm", "tự hỏi", "nhớ lại", "trong lòng", "hy vọng", "lo sợ"),
    stop_words=frozenset({"của", "và", "là", "trong", "với", "những", "các", "một", "chương"}),
)

LANGUAGES = {p.code: p for p in (ENGLISH, VIETNAMESE)}


def get_language(code: str | None) -> LanguageProfile:
    return LANGUAGES.get((code or "en").lower(), ENGLISH)
