"""
test_dedup_service.py - Tests for leadminer/services/dedup_service.py

Covers: company/KDM/signal duplicate rules, tenant scoping, exclude_id,
the per-session CompanyIndex, and fail-open behavior on DB errors.

Called by: pytest
Depends on: leadminer.services.dedup_service, conftest fixtures
"""

from unittest.mock import MagicMock

from leadminer.models import Company
from leadminer.services.dedup_service import (
    CompanyIndex,
    check_company_duplicate,
    check_kdm_duplicate,
    check_signal_duplicate,
    find_company_duplicates,
    find_kdm_duplicates,
    find_signal_duplicates,
)


def _broken_db():
    db = MagicMock()
    db.query.side_effect = RuntimeError("connection lost")
    return db


# ── Companies ────────────────────────────────────────────────────────


def test_company_domain_match_wins_over_name():
    existing = [{"id": 1, "company_name": "Totally Different", "website": "https://www.techcloud.com"}]
    matches = find_company_duplicates("TechCloud", "techcloud.com/about", existing)
    assert len(matches) == 1
    assert matches[0].match_type == "domain"


def test_company_name_match_without_websites():
    existing = [{"id": 1, "company_name": "TechCloud Solutions", "website": None}]
    matches = find_company_duplicates("TechCloud", "", existing)
    assert [m.match_type for m in matches] == ["name"]


def test_company_no_match():
    existing = [{"id": 1, "company_name": "Globex", "website": "globex.com"}]
    assert find_company_duplicates("Initech", "initech.com", existing) == []


def test_check_company_duplicate_scoped_to_owner(db_session, test_company):
    mine = check_company_duplicate(db_session, "user-1", "Other Name", "acme-analytics.com")
    assert mine.is_duplicate
    theirs = check_company_duplicate(db_session, "user-2", "Other Name", "acme-analytics.com")
    assert not theirs.is_duplicate


def test_check_company_duplicate_exclude_id(db_session, test_company):
    result = check_company_duplicate(
        db_session, "user-1", "Acme Analytics", test_company.website, exclude_id=test_company.id
    )
    assert not result.is_duplicate


def test_check_company_duplicate_fails_open():
    result = check_company_duplicate(_broken_db(), "user-1", "Acme", "acme.com")
    assert result.is_duplicate is False
    assert result.duplicates == []


def test_company_index_catches_same_session_duplicates(db_session, test_company):
    index = CompanyIndex.load(db_session, "user-1")
    assert index.matches("Acme Analytics Group", "")
    assert not index.matches("Initech", "initech.com")
    index.add("Initech", "https://initech.com")
    assert index.matches("Initech Corp", "www.initech.com")


def test_company_index_load_fails_open():
    index = CompanyIndex.load(_broken_db(), "user-1")
    assert index.records == []


def test_to_dict_shape(db_session, test_company):
    data = check_company_duplicate(db_session, "user-1", "Acme Analytics", "").to_dict()
    assert data["is_duplicate"] is True
    assert data["duplicates"][0]["record"]["id"] == test_company.id
    assert data["duplicates"][0]["match_type"] == "name"


# ── Decision makers ──────────────────────────────────────────────────


def test_kdm_email_match_case_insensitive():
    existing = [{"email": "Jane@Acme.com", "linkedin_profile": None}]
    assert find_kdm_duplicates("jane@acme.com", "", existing)[0].match_type == "email"


def test_kdm_linkedin_match():
    existing = [{"email": None, "linkedin_profile": "https://linkedin.com/in/jane"}]
    assert find_kdm_duplicates("", "https://linkedin.com/in/jane", existing)[0].match_type == "linkedin"


def test_kdm_blank_values_never_match():
    existing = [{"email": "", "linkedin_profile": ""}]
    assert find_kdm_duplicates("", "", existing) == []


def test_check_kdm_duplicate_by_company(db_session, test_kdm):
    assert check_kdm_duplicate(db_session, "jane@acme-analytics.com", "", test_kdm.company_id).is_duplicate
    other = Company(owner_id="user-1", company_name="Other Co")
    db_session.add(other)
    db_session.commit()
    assert not check_kdm_duplicate(db_session, "jane@acme-analytics.com", "", other.id).is_duplicate


def test_check_kdm_duplicate_fails_open():
    assert not check_kdm_duplicate(_broken_db(), "a@b.com", "").is_duplicate


# ── Signals ──────────────────────────────────────────────────────────


def test_signal_title_match():
    existing = [{"signal_title": "Acme raises $10M", "signal_url": None}]
    assert find_signal_duplicates("ACME RAISES $10M", None, existing)[0].match_type == "title"


def test_signal_url_match():
    existing = [{"signal_title": "Old headline", "signal_url": "https://n.example/a"}]
    assert find_signal_duplicates("New headline", "https://n.example/a", existing)[0].match_type == "url"


def test_check_signal_duplicate_scoped_by_type(db_session, test_signal):
    same_type = check_signal_duplicate(
        db_session, test_signal.company_id, test_signal.signal_title, "funding"
    )
    other_type = check_signal_duplicate(
        db_session, test_signal.company_id, test_signal.signal_title, "news"
    )
    assert same_type.is_duplicate
    assert not other_type.is_duplicate


def test_check_signal_duplicate_fails_open():
    assert not check_signal_duplicate(_broken_db(), 1, "title", "funding").is_duplicate
