"""Link an incoming message to at most one of the user's tracked jobs."""
import logging
from dataclasses import dataclass
from typing import Optional

from django.db.models import F

from jobmail.classifier import company_from_domain, sender_domain
from jobmail.models import Job
from jobmail.utils.company_matching import normalize_name

logger = logging.getLogger(__name__)

MATCHED_BY_URL = 'url'
MATCHED_BY_COMPANY = 'company'


@dataclass(frozen=True)
class MatchResult:
    job_id: Optional[int] = None
    matched_by: Optional[str] = None

    def __bool__(self):
        return self.job_id is not None


NO_MATCH = MatchResult()


def _normalize_url(url):
    return (url or '').strip().lower().rstrip('/')


def match_by_url(user, body):
    """Job whose URL appears in the body; longest URL, then latest applied_date wins."""
    haystack = (body or '').lower()
    if not haystack:
        return None

    hits = []
    for job_id, job_url, applied_date in Job.objects.filter(user=user).exclude(job_url='').values_list(
        'id', 'job_url', 'applied_date'
    ):
        needle = _normalize_url(job_url)
        if needle and needle in haystack:
            hits.append((len(needle), applied_date.toordinal() if applied_date else 0, job_id))
    if not hits:
        return None
    hits.sort(reverse=True)
    return hits[0][2]


def match_by_company(user, company):
    """Most recently applied non-terminal job whose company name normalizes to ``company``."""
    wanted = normalize_name(company)
    if not wanted:
        return None

    candidates = (
        Job.objects.filter(user=user)
        .exclude(application_status__in=Job.TERMINAL_STATUSES)
        .order_by(F('applied_date').desc(nulls_last=True), F('last_seen_at').desc(nulls_last=True), '-id')
        .values_list('id', 'company_name')
    )
    for job_id, company_name in candidates:
        if normalize_name(company_name) == wanted:
            return job_id
    return None


def match(user, raw, classification):
    job_id = match_by_url(user, raw.body_text)
    if job_id is not None:
        return MatchResult(job_id, MATCHED_BY_URL)

    company = classification.metadata.get('inferred_company') or company_from_domain(sender_domain(raw.from_address))
    job_id = match_by_company(user, company)
    if job_id is not None:
        return MatchResult(job_id, MATCHED_BY_COMPANY)

    logger.debug(f"No job match for message '{raw.subject[:60]}' (company hint: {company})")
    return NO_MATCH
