"""Tests for the row-by-row import worker against an in-memory database."""

from datetime import date
from decimal import Decimal

import pytest
from conftest import DEFAULT_MAPPING, OTHER_USER_ID, USER_ID
from sqlalchemy import select

from fintrack.api.schemas.job import ImportMapping
from fintrack.core.exceptions import (
    AttemptsExhaustedError,
    CsvParseError,
    JobNotFoundError,
    NoActiveAccountError,
)
from fintrack.db.models import ImportJob, ImportStatus, Transaction
from fintrack.services.import_worker import (
    ATTEMPTS_EXHAUSTED,
    mark_job_failed,
    process_import_job,
)
from fintrack.services.progress_tracker import InMemoryProgressTracker
from fintrack.utils.csv_validator import INVALID_AMOUNT, INVALID_DATE

SCENARIO_CSV = (
    "Fecha,Monto,Descripcion\n"
    "2024-01-15,-50.00,Supermercado\n"
    ",100,Sin fecha\n"
    "2024-01-17,2500,Salario\n"
)


def _run(session_factory, job, csv_data, mapping=DEFAULT_MAPPING, **kwargs):
    return process_import_job(
        session_factory, job.id, job.user_id, job.filename, csv_data, mapping, **kwargs
    )


def _reload(session, job_id):
    session.expire_all()
    return session.get(ImportJob, job_id)


def _transactions(session, job_id):
    session.expire_all()
    return session.scalars(
        select(Transaction)
        .where(Transaction.import_job_id == job_id)
        .order_by(Transaction.import_row)
    ).all()


def _csv(rows, header="Fecha,Monto,Descripcion"):
    return header + "\n" + "".join(row + "\n" for row in rows)


class FlakyProgress(InMemoryProgressTracker):
    """Raises once, on the Nth publish, to simulate an infrastructure fault."""

    def __init__(self, fail_on_call):
        super().__init__()
        self.calls = 0
        self.fail_on_call = fail_on_call

    def publish(self, *args, **kwargs):
        self.calls += 1
        if self.calls == self.fail_on_call:
            raise ConnectionError("progress channel down")
        super().publish(*args, **kwargs)


class DurableSpy(InMemoryProgressTracker):
    """Records the durable processed_rows value each time progress is published."""

    def __init__(self, session_factory):
        super().__init__()
        self.session_factory = session_factory
        self.durable = []

    def publish(self, job_id, *args, **kwargs):
        super().publish(job_id, *args, **kwargs)
        with self.session_factory() as session:
            self.durable.append(session.get(ImportJob, job_id).processed_rows)


class TestScenario:
    def test_mixed_rows(self, session, session_factory, accounts, make_job, progress):
        job = make_job()
        result = _run(session_factory, job, SCENARIO_CSV, progress=progress)

        assert result.as_dict() == {"success_rows": 2, "error_rows": 1, "total_rows": 3}
        job = _reload(session, job.id)
        assert job.status == ImportStatus.COMPLETED.value
        assert (job.total_rows, job.processed_rows) == (3, 3)
        assert (job.success_rows, job.error_rows) == (2, 1)
        assert len(job.error_details) == 1
        assert job.error_details[0]["row"] == 3
        assert job.error_details[0]["error"].startswith("Fecha inválida")
        assert job.attempts == 1
        assert job.started_at is not None
        assert job.finished_at is not None

        expense, income = _transactions(session, job.id)
        assert (expense.type, expense.amount, expense.date) == (
            "EXPENSE",
            Decimal("50.00"),
            date(2024, 1, 15),
        )
        assert (income.type, income.amount) == ("INCOME", Decimal("2500.00"))
        assert [expense.import_row, income.import_row] == [2, 4]
        assert expense.account_id == accounts[0].id
        assert expense.category_id is None
        assert expense.payment_method == "OTHER"
        assert expense.user_id == USER_ID

        assert progress.fetch(job.id)["progress"] == 100
        assert progress.fetch(job.id)["status"] == "COMPLETED"

    def test_counters_partition_rows(self, session, session_factory, accounts, make_job):
        rows = [
            "2024-02-01,10,a",
            "2024-02-02,abc,b",
            "bad,5,c",
            "2024-02-04,0,d",
            "2024-02-05,-7.25,e",
        ]
        job = make_job()
        _run(session_factory, job, _csv(rows))

        job = _reload(session, job.id)
        assert job.success_rows + job.error_rows == job.processed_rows == job.total_rows == 5
        assert [detail["row"] for detail in job.error_details] == [3, 4, 5]
        assert [detail["error"] for detail in job.error_details] == [
            INVALID_AMOUNT,
            INVALID_DATE,
            INVALID_AMOUNT,
        ]
        assert len(_transactions(session, job.id)) == job.success_rows

    def test_preserves_file_order(self, session, session_factory, accounts, make_job):
        rows = [f"2024-03-{day:02d},-{day},compra {day}" for day in range(1, 21)]
        job = make_job()
        _run(session_factory, job, _csv(rows))

        stored = _transactions(session, job.id)
        assert [t.description for t in stored] == [f"compra {day}" for day in range(1, 21)]
        assert [t.import_row for t in stored] == list(range(2, 22))

    def test_header_only_completes_empty(self, session, session_factory, accounts, make_job, progress):
        job = make_job()
        result = _run(session_factory, job, "Fecha,Monto,Descripcion\n", progress=progress)

        assert result.total_rows == 0
        job = _reload(session, job.id)
        assert job.status == ImportStatus.COMPLETED.value
        assert job.error_details is None
        assert job.progress_percent == 100

    def test_accepts_mapping_model(self, session, session_factory, accounts, make_job):
        job = make_job()
        _run(session_factory, job, SCENARIO_CSV, mapping=ImportMapping(**DEFAULT_MAPPING))
        assert _reload(session, job.id).success_rows == 2


class TestLookups:
    MAPPING = {
        "date": "Fecha",
        "amount": "Monto",
        "description": "Descripcion",
        "account": "Cuenta",
        "category": "Categoria",
        "type": "Tipo",
    }

    def test_resolves_names_and_falls_back(
        self, session, session_factory, accounts, add_category, make_job
    ):
        comida = add_category("Comida")
        csv_data = _csv(
            [
                "2024-01-15,-20,Almuerzo,efectivo,comida,",
                "2024-01-16,-30,Taxi,Tarjeta Oro,Transporte,",
                "2024-01-17,-15,Reembolso,,,ingreso",
            ],
            header="Fecha,Monto,Descripcion,Cuenta,Categoria,Tipo",
        )
        job = make_job(mapping=self.MAPPING)
        _run(session_factory, job, csv_data, mapping=self.MAPPING)

        lunch, taxi, refund = _transactions(session, job.id)
        assert (lunch.account_id, lunch.category_id) == (accounts[1].id, comida.id)
        assert (taxi.account_id, taxi.category_id) == (accounts[0].id, None)
        assert refund.type == "INCOME"
        assert refund.amount == Decimal("15.00")

    def test_long_description_truncated(self, session, session_factory, accounts, make_job):
        job = make_job()
        _run(session_factory, job, _csv(["2024-01-15,-1," + "d" * 400]))
        (stored,) = _transactions(session, job.id)
        assert stored.description == "d" * 255


class TestPipelineFaults:
    def test_no_active_account_fails_job(self, session, session_factory, add_account, make_job, progress):
        add_account("Cerrada", is_active=False)
        job = make_job()
        with pytest.raises(NoActiveAccountError):
            _run(session_factory, job, SCENARIO_CSV, progress=progress)

        job = _reload(session, job.id)
        assert job.status == ImportStatus.FAILED.value
        assert job.error_message == "No hay cuentas disponibles para importar"
        assert job.finished_at is not None
        assert _transactions(session, job.id) == []
        assert progress.fetch(job.id)["status"] == "FAILED"

    def test_malformed_csv_fails_job(self, session, session_factory, accounts, make_job):
        job = make_job()
        with pytest.raises(CsvParseError):
            _run(session_factory, job, 'Fecha,Monto\n2024-01-15,"5"x\n')
        job = _reload(session, job.id)
        assert job.status == ImportStatus.FAILED.value
        assert "CSV parsing error" in job.error_message

    def test_missing_job(self, session_factory, accounts):
        with pytest.raises(JobNotFoundError):
            process_import_job(
                session_factory, "no-such-job", USER_ID, "x.csv", SCENARIO_CSV, DEFAULT_MAPPING
            )

    def test_other_users_job_left_untouched(self, session, session_factory, accounts, make_job):
        job = make_job(user_id=OTHER_USER_ID)
        with pytest.raises(JobNotFoundError):
            process_import_job(
                session_factory, job.id, USER_ID, job.filename, SCENARIO_CSV, DEFAULT_MAPPING
            )
        assert _reload(session, job.id).status == ImportStatus.PENDING.value


class TestTransientFaults:
    def test_non_final_attempt_leaves_job_processing(
        self, session, session_factory, accounts, make_job
    ):
        job = make_job()
        with pytest.raises(ConnectionError):
            _run(session_factory, job, SCENARIO_CSV, progress=FlakyProgress(3), final_attempt=False)

        job = _reload(session, job.id)
        assert job.status == ImportStatus.PROCESSING.value
        assert job.error_message is None
        # Rows committed before the fault stay committed
        assert [t.import_row for t in _transactions(session, job.id)] == [2]

    def test_final_attempt_marks_failed(self, session, session_factory, accounts, make_job):
        job = make_job()
        with pytest.raises(ConnectionError):
            _run(session_factory, job, SCENARIO_CSV, progress=FlakyProgress(3), final_attempt=True)

        job = _reload(session, job.id)
        assert job.status == ImportStatus.FAILED.value
        assert job.error_message.startswith("Error inesperado")

    def test_retry_after_fault_does_not_duplicate(
        self, session, session_factory, accounts, make_job
    ):
        job = make_job()
        with pytest.raises(ConnectionError):
            _run(session_factory, job, SCENARIO_CSV, progress=FlakyProgress(3), final_attempt=False)
        assert len(_transactions(session, job.id)) == 1

        result = _run(session_factory, job, SCENARIO_CSV)

        assert result.as_dict() == {"success_rows": 2, "error_rows": 1, "total_rows": 3}
        job = _reload(session, job.id)
        assert job.status == ImportStatus.COMPLETED.value
        assert job.attempts == 2
        assert [t.import_row for t in _transactions(session, job.id)] == [2, 4]


class TestRedelivery:
    def test_terminal_job_is_noop(self, session, session_factory, accounts, make_job):
        job = make_job()
        first = _run(session_factory, job, SCENARIO_CSV)
        second = _run(session_factory, job, SCENARIO_CSV)

        assert first == second
        assert _reload(session, job.id).attempts == 1
        assert len(_transactions(session, job.id)) == 2

    def test_failed_job_is_noop(self, session, session_factory, accounts, make_job):
        job = make_job()
        assert mark_job_failed(session, job.id, "cancelado") is True
        result = _run(session_factory, job, SCENARIO_CSV)

        assert result.total_rows == 0
        assert _reload(session, job.id).status == ImportStatus.FAILED.value
        assert _transactions(session, job.id) == []
        assert mark_job_failed(session, job.id, "otra vez") is False

    def test_resume_counts_existing_rows_and_never_regresses(
        self, session, session_factory, accounts, make_job
    ):
        rows = [f"2024-04-{day:02d},-{day},pago {day}" for day in range(1, 5)]
        job = make_job(
            status=ImportStatus.PROCESSING.value,
            total_rows=4,
            processed_rows=2,
            success_rows=2,
            attempts=1,
        )
        for number in (2, 3):
            session.add(
                Transaction(
                    user_id=USER_ID,
                    account_id=accounts[0].id,
                    type="EXPENSE",
                    amount=Decimal("1.00"),
                    date=date(2024, 4, 1),
                    description=f"previo {number}",
                    import_job_id=job.id,
                    import_row=number,
                )
            )
        session.commit()
        progress = InMemoryProgressTracker()

        result = _run(session_factory, job, _csv(rows), progress=progress)

        assert result.success_rows == 4
        stored = _transactions(session, job.id)
        assert [t.import_row for t in stored] == [2, 3, 4, 5]
        assert [t.description for t in stored[:2]] == ["previo 2", "previo 3"]
        history = progress.history[job.id]
        assert history == sorted(history)
        assert history[0] == 50
        assert _reload(session, job.id).attempts == 2

    def test_crash_redelivery_past_attempt_limit_fails(
        self, session, session_factory, accounts, make_job, progress
    ):
        job = make_job(status=ImportStatus.PROCESSING.value, attempts=3)

        with pytest.raises(AttemptsExhaustedError):
            _run(session_factory, job, SCENARIO_CSV, progress=progress, max_attempts=3)

        job = _reload(session, job.id)
        assert job.status == ImportStatus.FAILED.value
        assert job.error_message == ATTEMPTS_EXHAUSTED
        assert job.attempts == 4
        assert job.finished_at is not None
        assert _transactions(session, job.id) == []
        assert progress.fetch(job.id)["status"] == "FAILED"

    def test_last_allowed_attempt_still_runs(self, session, session_factory, accounts, make_job):
        job = make_job(status=ImportStatus.PROCESSING.value, attempts=2)

        result = _run(session_factory, job, SCENARIO_CSV, max_attempts=3)

        assert result.success_rows == 2
        job = _reload(session, job.id)
        assert (job.status, job.attempts) == (ImportStatus.COMPLETED.value, 3)


class TestProgress:
    def test_checkpoint_cadence_and_monotonic_counters(
        self, session, session_factory, accounts, make_job
    ):
        rows = [f"2024-05-01,-{n},fila {n}" for n in range(1, 121)]
        job = make_job()
        spy = DurableSpy(session_factory)

        _run(session_factory, job, _csv(rows), progress=spy, checkpoint_every=50)

        assert spy.durable == sorted(spy.durable)
        assert set(spy.durable) == {0, 50, 100, 120}
        history = spy.history[job.id]
        assert history == sorted(history)
        assert history[-1] == 100

    def test_error_details_capped(self, session, session_factory, accounts, make_job):
        rows = ["2024-06-01,-1,ok"] + [f"nope,-{n},mal" for n in range(5)]
        job = make_job()
        _run(session_factory, job, _csv(rows), error_details_limit=2)

        job = _reload(session, job.id)
        assert job.error_rows == 5
        assert [detail["row"] for detail in job.error_details] == [3, 4]
