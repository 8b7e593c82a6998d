import os
import tempfile
from datetime import date

import pytest

# The app module creates its tables on import; keep that away from the package dir
os.environ.setdefault(
    "CLINIC_SCHEDULER_DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.mkdtemp(prefix='clinic-scheduler-'), 'app.db')}",
)

from clinic_scheduler import models  # noqa: E402,F401
from clinic_scheduler.database import Base, make_engine, make_session_factories  # noqa: E402
from clinic_scheduler.models import (  # noqa: E402
    Clinic, Department, DoctorCombination, DoctorSchedule, Holiday, Staff,
)

LEAVE_DAY = date(2025, 11, 21)  # Friday


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def factories(engine):
    return make_session_factories(engine)


@pytest.fixture
def session_factory(factories):
    return factories[1]


@pytest.fixture
def db(factories):
    session = factories[0]()
    yield session
    session.close()


@pytest.fixture
def make_clinic(db):
    def _make(name="Test Clinic", **policy):
        c = Clinic(name=name, **policy)
        db.add(c)
        db.flush()
        cid = c.id
        db.commit()
        return cid
    return _make


@pytest.fixture
def clinic_id(make_clinic):
    return make_clinic()


@pytest.fixture
def make_staff(db):
    def _make(clinic_id, name, category="Hygienist", department="Treatment", **kw):
        s = Staff(clinic_id=clinic_id, name=name, category_name=category, department_name=department, **kw)
        db.add(s)
        db.flush()
        sid = s.id
        db.commit()
        return sid
    return _make


@pytest.fixture
def make_combination(db):
    def _make(clinic_id, doctors, table, night_shift=False, total=None):
        c = DoctorCombination(
            clinic_id=clinic_id,
            doctors=sorted(doctors),
            night_shift=night_shift,
            total_required=total if total is not None else sum(sum(v.values()) for v in table.values()),
            department_category_staff=table,
        )
        db.add(c)
        db.flush()
        cid = c.id
        db.commit()
        return cid
    return _make


@pytest.fixture
def put_doctors(db):
    def _put(clinic_id, day, doctors, night_shift=False):
        for code in doctors:
            db.add(DoctorSchedule(clinic_id=clinic_id, date=day, doctor_code=code, night_shift=night_shift))
        db.commit()
    return _put


@pytest.fixture
def add_holiday(db):
    def _add(clinic_id, day, name="Holiday"):
        db.add(Holiday(clinic_id=clinic_id, date=day, name=name))
        db.commit()
    return _add


@pytest.fixture
def add_department(db):
    def _add(clinic_id, name, use_auto_assignment=True):
        db.add(Department(clinic_id=clinic_id, name=name, use_auto_assignment=use_auto_assignment))
        db.commit()
    return _add


@pytest.fixture
def hygienist_day(clinic_id, make_staff, make_combination, put_doctors):
    """Five active hygienists, three required on LEAVE_DAY: two may be away."""
    staff = [make_staff(clinic_id, f"Hygienist {i}") for i in range(1, 6)]
    make_combination(clinic_id, ["K", "L"], {"Treatment": {"Hygienist": 3}})
    put_doctors(clinic_id, LEAVE_DAY, ["L", "K"])
    return staff
