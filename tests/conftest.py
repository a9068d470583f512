"""Shared fixtures: an in-memory store and small sample families."""

import matplotlib
import pytest

from database import FamilyStore
from models import FEMALE, MALE


matplotlib.use("Agg")


SAMPLE_GEDCOM = """0 HEAD
1 SOUR TEST
1 GEDC
2 VERS 5.5.1
1 CHAR UTF-8
0 @I1@ INDI
1 NAME William /Windsor/
1 SEX M
1 BIRT
2 DATE 21 JUN 1982
2 PLAC London
0 @I2@ INDI
1 NAME Catherine /Middleton/
1 SEX F
1 BIRT
2 DATE 9 JAN 1982
0 @I3@ INDI
1 NAME George /Windsor/
1 SEX M
1 BIRT
2 DATE 22 JUL 2013
1 NOTE Eldest child
2 CONT Born at St Mary's
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 MARR
2 DATE 29 APR 2011
2 PLAC Westminster Abbey
1 CHIL @I3@
0 TRLR
"""


@pytest.fixture
def store():
    """A fresh in-memory store per test."""
    s = FamilyStore.open(":memory:")
    yield s
    s.close()


@pytest.fixture
def sample_gedcom():
    return SAMPLE_GEDCOM


@pytest.fixture
def couple_with_child(store):
    """William + Elizabeth with one child John."""
    william = store.create_person("William", "Smith", sex=MALE, birth_date="1950")
    elizabeth = store.create_person("Elizabeth", "Smith", sex=FEMALE, birth_date="1952")
    john = store.create_person("John", "Smith", sex=MALE, birth_date="1980")
    family = store.create_family(william.id, elizabeth.id, child_ids=[john.id])
    return william, elizabeth, john, family
