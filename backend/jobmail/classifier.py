"""
Rule-based email classification.

The rules live in a JSON table (``JOBMAIL['CLASSIFIER_RULES']``) mapping each
email type to weighted regex signals. A type's confidence is the sum of its
matched signal weights, normalized by the type's ``max_score`` and capped at
100. The table is re-read whenever the file's mtime changes, so rules can be
tuned without a redeploy.

Classification is pure: the same message and the same rule table always give
the same result. Relative deadlines ("within 3 days") are resolved against the
message's ``received_at``, never against the clock.
"""
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.utils import parseaddr
from typing import Dict, List, Optional

from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from django.core.exceptions import ImproperlyConfigured

from jobmail.conf import get_setting
from jobmail.models import EmailEvent

logger = logging.getLogger(__name__)

# Highest first; breaks confidence ties
TYPE_PRIORITY = [
    EmailEvent.TYPE_OFFER,
    EmailEvent.TYPE_INTERVIEW_INVITE,
    EmailEvent.TYPE_ASSESSMENT,
    EmailEvent.TYPE_REJECTION,
    EmailEvent.TYPE_APPLICATION_CONFIRMATION,
    EmailEvent.TYPE_FOLLOW_UP,
    EmailEvent.TYPE_NOT_JOB_RELATED,
    EmailEvent.TYPE_OTHER,
]

SIGNAL_FIELDS = ('subject', 'body', 'text', 'sender_domain')

# Only the head of long bodies is scanned
BODY_SCAN_CHARS = 10000

PERSONAL_DOMAINS = {
    'gmail', 'googlemail', 'yahoo', 'outlook', 'hotmail', 'live', 'aol', 'icloud', 'me',
    'protonmail', 'proton',
}
GENERIC_LOCAL_LABELS = {'noreply', 'no-reply', 'donotreply', 'do-not-reply', 'notifications', 'mail', 'email', 'info'}
ATS_DOMAINS = (
    'greenhouse.io', 'greenhouse-mail.io', 'lever.co', 'myworkdayjobs.com', 'myworkday.com', 'workday.com',
    'ashbyhq.com', 'smartrecruiters.com', 'icims.com', 'jobvite.com', 'taleo.net', 'bamboohr.com',
    'breezy.hr', 'recruitee.com', 'workablemail.com', 'workable.com',
)
SECOND_LEVEL_SUFFIXES = {'co.uk', 'com.au', 'co.in', 'co.jp', 'com.br', 'co.nz'}

ASSESSMENT_HOSTS = (
    'hackerrank.com', 'codility.com', 'codesignal.com', 'testgorilla.com', 'hirevue.com',
    'coderpad.io', 'karat.com', 'qualified.io', 'leetcode.com',
)
MEETING_HOSTS = (
    'zoom.us', 'meet.google.com', 'teams.microsoft.com', 'calendly.com', 'goodtime.io', 'webex.com',
)

URL_RE = re.compile(r'https?://[^\s<>"\')\]]+', re.IGNORECASE)

TITLE_WORDS = (
    r'Engineer|Developer|Programmer|Manager|Analyst|Scientist|Designer|Architect|Specialist|'
    r'Consultant|Coordinator|Associate|Intern|Director|Administrator|Recruiter|Lead'
)
JOB_TITLE_PATTERNS = [
    re.compile(r'(?:position|role|job|application) (?:of|for|as) (?:the |a |an )?((?:[A-Z][\w/+#.\-]*\s){0,4}(?:' + TITLE_WORDS + r'))\b'),
    re.compile(r'\b((?:[A-Z][\w/+#.\-]*\s){0,4}(?:' + TITLE_WORDS + r'))\b'),
    re.compile(r'\b((?:full[\s-]?stack|front[\s-]?end|back[\s-]?end|software|web|mobile|data|devops|ml|ai)\s+(?:engineer|developer))\b', re.IGNORECASE),
]

_COMPANY_WORDS = r"[A-Z][\w&'.\-]*(?: [A-Z][\w&'.\-]*){0,3}"
COMPANY_SUBJECT_PATTERNS = [
    re.compile(r'(?:application|applying) (?:to|with|at) (' + _COMPANY_WORDS + r')'),
    re.compile(r'\bat (' + _COMPANY_WORDS + r')'),
    re.compile(r'(' + _COMPANY_WORDS + r') (?:Recruiting|Careers|Talent|Hiring)\b'),
]

_MONTH = r'(?:jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\.?'
_DATE = (
    r'(\d{4}-\d{2}-\d{2}'
    r'|\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}'
    r'|' + _MONTH + r'\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?'
    r'|\d{1,2}(?:st|nd|rd|th)?\s+' + _MONTH + r'(?:,?\s+\d{4})?)'
)
DEADLINE_CUE = r'\b(?:deadline|due|complete(?:d)? by|submit(?:ted)? by|finish(?:ed)? by|no later than|respond by)\b'
DEADLINE_RE = re.compile(DEADLINE_CUE + r'[^\n]{0,40}?' + _DATE, re.IGNORECASE)
WITHIN_DAYS_RE = re.compile(r'within (\d{1,3}) (?:calendar |business )?days?', re.IGNORECASE)


@dataclass
class Signal:
    pattern: re.Pattern
    field: str
    weight: int


@dataclass
class TypeRule:
    email_type: str
    max_score: int
    signals: List[Signal]
    next_steps: Optional[str] = None


@dataclass
class Classification:
    email_type: str
    confidence: int
    metadata: Dict = field(default_factory=dict)
    scores: Dict[str, int] = field(default_factory=dict)


class RuleTable:
    """Parsed, compiled form of the JSON rule file."""

    def __init__(self, rules):
        self.rules = rules

    @classmethod
    def from_dict(cls, data):
        known = set(TYPE_PRIORITY)
        rules = []
        for email_type, type_rule in (data.get('types') or {}).items():
            if email_type not in known:
                logger.warning(f"Ignoring rules for unknown email type '{email_type}'")
                continue
            max_score = type_rule.get('max_score', 100)
            if not isinstance(max_score, (int, float)) or max_score <= 0:
                raise ImproperlyConfigured(f"max_score for '{email_type}' must be positive")
            signals = []
            for raw_signal in type_rule.get('signals', []):
                signal_field = raw_signal.get('field', 'text')
                if signal_field not in SIGNAL_FIELDS:
                    raise ImproperlyConfigured(f"Unknown signal field '{signal_field}' in '{email_type}' rules")
                try:
                    pattern = re.compile(raw_signal['pattern'], re.IGNORECASE)
                except (KeyError, re.error) as e:
                    raise ImproperlyConfigured(f"Bad signal pattern in '{email_type}' rules: {e}")
                signals.append(Signal(pattern=pattern, field=signal_field, weight=int(raw_signal.get('weight', 0))))
            rules.append(TypeRule(email_type, max_score, signals, type_rule.get('next_steps')))
        return cls(rules)

    @classmethod
    def from_file(cls, path):
        with open(path, encoding='utf-8') as fh:
            try:
                data = json.load(fh)
            except ValueError as e:
                raise ImproperlyConfigured(f"Classifier rules at {path} are not valid JSON: {e}")
        return cls.from_dict(data)

    def next_steps_for(self, email_type):
        for rule in self.rules:
            if rule.email_type == email_type:
                return rule.next_steps
        return None


class Classifier:
    def __init__(self, rule_table, min_confidence=None):
        self.rule_table = rule_table
        self.min_confidence = min_confidence

    def classify(self, raw):
        subject = raw.subject or ''
        body = (raw.body_text or '')[:BODY_SCAN_CHARS]
        fields = {
            'subject': subject,
            'body': body,
            'text': f"{subject}\n{body}",
            'sender_domain': sender_domain(raw.from_address),
        }

        scores = {}
        ranked = []
        for position, rule in enumerate(self.rule_table.rules):
            score = sum(s.weight for s in rule.signals if s.pattern.search(fields[s.field]))
            confidence = min(100, round(100 * score / rule.max_score))
            scores[rule.email_type] = confidence
            ranked.append((-confidence, TYPE_PRIORITY.index(rule.email_type), position, rule.email_type))

        email_type, confidence = EmailEvent.TYPE_OTHER, 0
        if ranked:
            ranked.sort()
            best = ranked[0]
            confidence = -best[0]
            threshold = self.min_confidence if self.min_confidence is not None else get_setting('MIN_CONFIDENCE')
            if confidence >= threshold:
                email_type = best[3]

        metadata = extract_metadata(raw, email_type, fields)
        metadata['next_steps'] = self.rule_table.next_steps_for(email_type)
        return Classification(email_type=email_type, confidence=confidence, metadata=metadata, scores=scores)


def sender_domain(from_header):
    _, address = parseaddr(from_header or '')
    if '@' not in address:
        return ''
    return address.rsplit('@', 1)[1].strip().lower().rstrip('>')


def _registrable_label(domain):
    labels = [label for label in domain.split('.') if label]
    if len(labels) < 2:
        return labels[0] if labels else ''
    if '.'.join(labels[-2:]) in SECOND_LEVEL_SUFFIXES and len(labels) >= 3:
        return labels[-3]
    return labels[-2]


def company_from_domain(domain):
    """Company hint from the sender domain; None for personal mailboxes and bare ATS hosts."""
    if not domain:
        return None
    for ats in ATS_DOMAINS:
        if domain == ats or domain.endswith('.' + ats):
            sub = domain[:-len(ats)].rstrip('.')
            # e.g. acme.myworkdayjobs.com
            label = sub.split('.')[-1] if sub else ''
            if label and label not in GENERIC_LOCAL_LABELS and label not in ('us', 'eu', 'app', 'jobs'):
                return label.capitalize()
            return None
    label = _registrable_label(domain)
    if not label or label in PERSONAL_DOMAINS or label in GENERIC_LOCAL_LABELS:
        return None
    return label.capitalize()


def company_from_text(subject):
    for pattern in COMPANY_SUBJECT_PATTERNS:
        m = pattern.search(subject or '')
        if m:
            candidate = m.group(1).strip(" .,-'")
            if len(candidate) >= 2:
                return candidate
    return None


def infer_job_title(subject, body):
    for text in (subject, body[:2000]):
        for pattern in JOB_TITLE_PATTERNS:
            m = pattern.search(text or '')
            if m:
                title = re.sub(r'\s+', ' ', m.group(1)).strip()
                if 3 <= len(title) <= 100:
                    return title
    return None


def _parse_date(text, received_at):
    anchor = datetime(received_at.year, received_at.month, received_at.day)
    try:
        parsed = date_parser.parse(text.replace('.', ' ').strip(), default=anchor, fuzzy=True)
    except (ValueError, OverflowError):
        return None
    # A month/day without a year that falls before the message belongs to next year
    if not re.search(r'\d{4}|\d{1,2}[/\-]\d{1,2}[/\-]\d{2}', text) and parsed.date() < anchor.date():
        parsed += relativedelta(years=1)
    return parsed.date()


def extract_deadline(text, received_at):
    """ISO date of the first deadline mentioned in the text, if any."""
    m = DEADLINE_RE.search(text or '')
    if m:
        parsed = _parse_date(m.group(1), received_at)
        if parsed:
            return parsed.isoformat()
    m = WITHIN_DAYS_RE.search(text or '')
    if m:
        return (received_at.date() + timedelta(days=int(m.group(1)))).isoformat()
    return None


def extract_links(text):
    return [url.rstrip('.,;:!?') for url in URL_RE.findall(text or '')]


def _first_on_hosts(urls, hosts):
    for url in urls:
        host = re.sub(r'^https?://', '', url, flags=re.IGNORECASE).split('/')[0].split(':')[0].lower()
        if any(host == h or host.endswith('.' + h) for h in hosts):
            return url
    return None


def extract_metadata(raw, email_type, fields):
    body = fields['body']
    urls = extract_links(body)

    assessment_link = _first_on_hosts(urls, ASSESSMENT_HOSTS)
    if assessment_link is None and email_type == EmailEvent.TYPE_ASSESSMENT and urls:
        assessment_link = urls[0]
    interview_link = _first_on_hosts(urls, MEETING_HOSTS)
    if interview_link is None and email_type == EmailEvent.TYPE_INTERVIEW_INVITE and urls:
        interview_link = urls[0]

    domain = fields['sender_domain']
    return {
        'deadline': extract_deadline(fields['text'], raw.received_at),
        'assessment_link': assessment_link,
        'interview_link': interview_link,
        'inferred_company': company_from_domain(domain) or company_from_text(raw.subject),
        'inferred_job_title': infer_job_title(raw.subject or '', body),
        'sender_domain': domain or None,
    }


_cache_lock = threading.Lock()
_cache = {'path': None, 'mtime': None, 'classifier': None}


def get_classifier():
    """Classifier for the configured rule file, rebuilt when the file changes."""
    path = get_setting('CLASSIFIER_RULES')
    try:
        mtime = os.path.getmtime(path)
    except OSError as e:
        raise ImproperlyConfigured(f"Classifier rules not found at {path}: {e}")

    with _cache_lock:
        if _cache['classifier'] is None or _cache['path'] != path or _cache['mtime'] != mtime:
            logger.info(f"Loading classifier rules from {path}")
            _cache['classifier'] = Classifier(RuleTable.from_file(path))
            _cache['path'] = path
            _cache['mtime'] = mtime
        return _cache['classifier']


def classify(raw):
    return get_classifier().classify(raw)
