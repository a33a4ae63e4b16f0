from dataclasses import dataclass

from judge_gateway.exceptions import UnsupportedLanguage


@dataclass(frozen=True)
class LanguageBinding:
    key: str
    backend_id: int
    name: str


# Judge0 CE language ids
_BINDINGS = (
    LanguageBinding("javascript", 63, "JavaScript (Node.js 12.14.0)"),
    LanguageBinding("python", 71, "Python (3.8.1)"),
    LanguageBinding("java", 62, "Java (OpenJDK 13.0.1)"),
    LanguageBinding("cpp", 54, "C++ (GCC 9.2.0)"),
    LanguageBinding("c", 50, "C (GCC 9.2.0)"),
    LanguageBinding("typescript", 74, "TypeScript (3.7.4)"),
    LanguageBinding("csharp", 51, "C# (Mono 6.6.0.161)"),
    LanguageBinding("go", 60, "Go (1.13.5)"),
    LanguageBinding("php", 68, "PHP (7.4.1)"),
    LanguageBinding("ruby", 72, "Ruby (2.7.0)"),
    LanguageBinding("rust", 73, "Rust (1.40.0)"),
    LanguageBinding("kotlin", 78, "Kotlin (1.3.70)"),
)

LANGUAGES: dict[str, LanguageBinding] = {b.key: b for b in _BINDINGS}

# Languages accepted from callers; narrower than the registry
ALLOWED_LANGUAGES: frozenset[str] = frozenset(
    ["javascript", "python", "java", "cpp", "c", "typescript"]
)


def backend_id_for(language) -> int:
    if not isinstance(language, str):
        raise UnsupportedLanguage(language)
    binding = LANGUAGES.get(language.strip().lower())
    if binding is None:
        raise UnsupportedLanguage(language)
    return binding.backend_id


def supported_languages() -> frozenset[str]:
    return frozenset(LANGUAGES)


def is_allowed(language) -> bool:
    return isinstance(language, str) and language in ALLOWED_LANGUAGES


def language_bindings(allowed_only: bool = True) -> list[LanguageBinding]:
    return [b for b in _BINDINGS if not allowed_only or b.key in ALLOWED_LANGUAGES]
