"""Search reports: parse, merge and format.

A search report is a small line-oriented text document a backend returns
next to the search results, one per searched index. Each line starts with a
tag:

    IndexName: notes
    IndexCounts: 1200 340 150 12 25
    StemmerName: none
    SearchOriginal: hello world
    SearchReformatted: "hello" OR "world"
    SearchTerm: hello * hello 1.0000 12 7
    PositiveFeedbackCounts: 3 3 2
    PositiveFeedbackTerms: alpha
    SearchWarning: something worth knowing

Unknown tags are ignored.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from search_script.logger import logging

logger = logging.getLogger(__name__)

INDEX_NAME = "IndexName:"
INDEX_COUNTS = "IndexCounts:"
STEMMER_NAME = "StemmerName:"
SEARCH_ORIGINAL = "SearchOriginal:"
SEARCH_REFORMATTED = "SearchReformatted:"
SEARCH_ERROR = "SearchError:"
SEARCH_SETTING = "SearchSetting:"
SEARCH_WARNING = "SearchWarning:"
SEARCH_TERM = "SearchTerm:"
POSITIVE_FEEDBACK_COUNTS = "PositiveFeedbackCounts:"
POSITIVE_FEEDBACK_TERMS = "PositiveFeedbackTerms:"
NEGATIVE_FEEDBACK_COUNTS = "NegativeFeedbackCounts:"
NEGATIVE_FEEDBACK_TERMS = "NegativeFeedbackTerms:"

ANY_FIELD = "*"

# Negative term counts carry a reason instead of a count
TERM_STOP = -1
TERM_NON_EXISTENT = -2
TERM_FREQUENT = -3


class ReportError(Exception):
    """A search report could not be parsed or there was nothing to merge."""


@dataclass
class SearchTermReport:
    term: str
    field_name: str | None
    stemmed: str
    weight: float
    term_count: int
    document_count: int

    def format_line(self) -> str:
        if self.term_count == TERM_STOP:
            return f" '{self.term}' is a stop term and is not indexed"
        if self.term_count == TERM_NON_EXISTENT:
            return f" '{self.term}' does not exist"
        if self.term_count == TERM_FREQUENT:
            return f" '{self.term}' is a frequent term and was omitted from the search"
        return f" '{self.term}'{_occurrences(self.term_count)}{_documents(self.document_count)}"


@dataclass
class FeedbackReport:
    total_term_count: int = 0
    unique_term_count: int = 0
    used_term_count: int = 0
    terms: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.total_term_count == 0 and not self.terms


@dataclass
class SearchReport:
    index_names: list[str] = field(default_factory=list)
    total_term_count: int = 0
    unique_term_count: int = 0
    total_stop_term_count: int = 0
    unique_stop_term_count: int = 0
    document_count: int = 0
    stemmer_name: str | None = None
    search_original: str | None = None
    search_reformatted: str | None = None
    errors: list[str] = field(default_factory=list)
    settings: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    terms: list[SearchTermReport] = field(default_factory=list)
    positive_feedback: FeedbackReport = field(default_factory=FeedbackReport)
    negative_feedback: FeedbackReport = field(default_factory=FeedbackReport)


def _occurrences(count: int) -> str:
    if count == 0:
        return " has no occurrences"
    if count == 1:
        return " occurs once"
    if count == 2:
        return " occurs twice"
    return f" occurs {count:,} times"


def _documents(count: int) -> str:
    if count == 0:
        return " in any documents"
    if count == 1:
        return " in one document"
    return f" in {count:,} documents"


def _plural(count: int, word: str) -> str:
    return f"{count:,} {word}" + ("" if count == 1 else "s")


def _integers(value: str, expected: int, tag: str) -> list[int]:
    parts = value.split()
    if len(parts) != expected:
        raise ReportError(f"Expected {expected} numbers after '{tag}', got: '{value}'")
    try:
        return [int(part) for part in parts]
    except ValueError as e:
        raise ReportError(f"Invalid number after '{tag}': '{value}'") from e


def _parse_term(value: str) -> SearchTermReport:
    parts = value.split()
    if len(parts) != 6:
        raise ReportError(f"Invalid search term entry: '{value}'")
    term, field_name, stemmed, weight, term_count, document_count = parts
    try:
        return SearchTermReport(
            term=term,
            field_name=None if field_name == ANY_FIELD else field_name,
            stemmed=stemmed,
            weight=float(weight),
            term_count=int(term_count),
            document_count=int(document_count),
        )
    except ValueError as e:
        raise ReportError(f"Invalid search term entry: '{value}'") from e


def parse_search_report(text: str) -> SearchReport:
    """Parse one search report.

    Raises:
        ReportError: If a tagged line carries an invalid value.
    """
    report = SearchReport()

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        tag, _, value = line.partition(" ")
        value = value.strip()

        if tag == INDEX_NAME:
            report.index_names.append(value)
        elif tag == INDEX_COUNTS:
            (
                report.total_term_count,
                report.unique_term_count,
                report.total_stop_term_count,
                report.unique_stop_term_count,
                report.document_count,
            ) = _integers(value, 5, tag)
        elif tag == STEMMER_NAME:
            report.stemmer_name = value
        elif tag == SEARCH_ORIGINAL:
            report.search_original = value
        elif tag == SEARCH_REFORMATTED:
            report.search_reformatted = value
        elif tag == SEARCH_ERROR:
            report.errors.append(value)
        elif tag == SEARCH_SETTING:
            report.settings.append(value)
        elif tag == SEARCH_WARNING:
            report.warnings.append(value)
        elif tag == SEARCH_TERM:
            report.terms.append(_parse_term(value))
        elif tag == POSITIVE_FEEDBACK_COUNTS:
            counts = _integers(value, 3, tag)
            (
                report.positive_feedback.total_term_count,
                report.positive_feedback.unique_term_count,
                report.positive_feedback.used_term_count,
            ) = counts
        elif tag == POSITIVE_FEEDBACK_TERMS:
            report.positive_feedback.terms.extend(value.split())
        elif tag == NEGATIVE_FEEDBACK_COUNTS:
            counts = _integers(value, 3, tag)
            (
                report.negative_feedback.total_term_count,
                report.negative_feedback.unique_term_count,
                report.negative_feedback.used_term_count,
            ) = counts
        elif tag == NEGATIVE_FEEDBACK_TERMS:
            report.negative_feedback.terms.extend(value.split())
        else:
            logger.debug("Unknown tag in search report: '%s'", tag)

    return report


def _merge_unique(target: list[str], values: Sequence[str]):
    for value in values:
        if value not in target:
            target.append(value)


def _merge_feedback(target: FeedbackReport, source: FeedbackReport):
    target.total_term_count = max(target.total_term_count, source.total_term_count)
    target.unique_term_count = max(target.unique_term_count, source.unique_term_count)
    target.used_term_count = max(target.used_term_count, source.used_term_count)
    _merge_unique(target.terms, source.terms)


def merge_search_reports(reports: Sequence[SearchReport]) -> SearchReport:
    """Combine per-index reports into one.

    Index counts and term counts add up; the search text comes from the first
    report that has it. A term that is a stop word (or missing) in one index
    but present in another keeps the real counts.
    """
    merged = SearchReport()
    terms: dict[tuple[str, str | None], SearchTermReport] = {}

    for report in reports:
        merged.index_names.extend(report.index_names)
        merged.total_term_count += report.total_term_count
        merged.unique_term_count += report.unique_term_count
        merged.total_stop_term_count += report.total_stop_term_count
        merged.unique_stop_term_count += report.unique_stop_term_count
        merged.document_count += report.document_count
        merged.stemmer_name = merged.stemmer_name or report.stemmer_name
        merged.search_original = merged.search_original or report.search_original
        merged.search_reformatted = merged.search_reformatted or report.search_reformatted
        _merge_unique(merged.errors, report.errors)
        _merge_unique(merged.settings, report.settings)
        _merge_unique(merged.warnings, report.warnings)
        _merge_feedback(merged.positive_feedback, report.positive_feedback)
        _merge_feedback(merged.negative_feedback, report.negative_feedback)

        for term in report.terms:
            key = (term.term, term.field_name)
            existing = terms.get(key)
            if existing is None:
                terms[key] = replace(term)
                merged.terms.append(terms[key])
            elif existing.term_count < 0 and term.term_count >= 0:
                existing.term_count = term.term_count
                existing.document_count = term.document_count
                existing.weight = term.weight
            elif term.term_count >= 0:
                existing.term_count += term.term_count
                existing.document_count += term.document_count

    return merged


def _format_feedback(lines: list[str], label: str, feedback: FeedbackReport):
    if feedback.is_empty:
        return
    lines.append(
        f"{label} relevance feedback of {_plural(feedback.total_term_count, 'term')}, "
        f"of which {feedback.unique_term_count:,} were unique and {feedback.used_term_count:,} were used:"
    )
    lines.extend(f"    {term}" for term in feedback.terms)
    lines.append("")


def format_search_report(report: SearchReport) -> str:
    lines: list[str] = []

    if report.index_names:
        lines.append(f"Search on index: {', '.join(report.index_names)}")
    lines.append(
        f"This index contains {_plural(report.total_term_count, 'term')} ({report.unique_term_count:,} unique), "
        f"and {_plural(report.total_stop_term_count, 'stop term')} ({report.unique_stop_term_count:,} unique), "
        f"in {_plural(report.document_count, 'document')}."
    )
    if report.stemmer_name:
        lines.append(f"The index was indexed using the '{report.stemmer_name}' stemmer.")
    lines.append("")

    if report.search_original:
        lines.extend(["The search:", f"    {report.search_original}", ""])
    if report.search_reformatted:
        lines.extend(["Is equivalent to:", f"    {report.search_reformatted}", ""])
    if report.errors:
        lines.append("Generated the following errors:")
        lines.extend(f" - {error}." for error in report.errors)
        lines.append("")
    if report.warnings:
        lines.append("Generated the following warnings:")
        lines.extend(f" - {warning}." for warning in report.warnings)
        lines.append("")
    if report.settings:
        lines.append("Used the following settings:")
        lines.extend(f" - {setting}." for setting in report.settings)
        lines.append("")

    if not report.terms:
        lines.extend(["Contained no search terms.", ""])
    for term in report.terms:
        where = f"in the '{term.field_name}' field" if term.field_name else "in any field"
        lines.append(f"Search for '{term.term}', {where}, term weight: {term.weight:.2f}:")
        lines.append(term.format_line())
        lines.append("")

    _format_feedback(lines, "Positive", report.positive_feedback)
    _format_feedback(lines, "Negative", report.negative_feedback)

    return "\n".join(lines).rstrip("\n")


def merge_and_format_search_reports(reports: Sequence[str]) -> str:
    """Merge the raw search reports of one search and format the result.

    Raises:
        ReportError: If there are no reports or one of them is malformed.
    """
    if not reports:
        raise ReportError("No search reports to merge")
    parsed = [parse_search_report(report) for report in reports]
    return format_search_report(merge_search_reports(parsed))
