"""
Contains ``SyncScheduler``, which runs a sync job unattended at a fixed interval using the
`schedule <https://schedule.readthedocs.io/>`_ library.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable

import schedule


def run_threaded(job_func: Callable) -> None:
    """
    Runs a job in its own thread so a slow job never holds up the scheduler.

    :param job_func: the job to run.
    """
    job_thread = threading.Thread(target=job_func, daemon=True)
    job_thread.start()


def run_continuously(scheduler: schedule.Scheduler, interval: float = 1) -> threading.Event:
    """
    Utility function which continuously calls ``scheduler`` to run any pending tasks.

    :param scheduler: the scheduler to drive.
    :param interval: interval between cycles, in seconds.

    :return: a threading event which can be used to stop the continuous run.
    """

    #: When set, the thread will be stopped
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        """
        Class to run continuous tasks
        """

        def run(self):
            """
            Keep tasks running until cancelled
            """
            while not cease_continuous_run.is_set():
                scheduler.run_pending()
                cease_continuous_run.wait(interval)

    continuous_thread = ScheduleThread(daemon=True)
    continuous_thread.start()
    return cease_continuous_run


class SyncScheduler:
    """
    Runs a sync job every ``interval`` minutes. The scheduler is either idle or running; at most one timer is ever
    active. Failures of the job are logged and never raised, since nobody is there to see them.
    """

    IDLE: str = 'Idle'
    RUNNING: str = 'Running'

    def __init__(self,
                 job: Callable,
                 has_credentials: Callable[[], bool],
                 scheduler: schedule.Scheduler | None = None,
                 runner: Callable[[Callable], None] = run_threaded,
                 ticker: Callable[[schedule.Scheduler], threading.Event] = run_continuously,
                 clock: Callable[[], datetime] = datetime.now):
        """
        :param job: the sync job. Its return value is logged.
        :param has_credentials: returns True if credentials are configured; the scheduler only starts if they are.
        :param scheduler: the ``schedule`` scheduler to register the job with. A private one is created if None.
        :param runner: runs each firing of the job, by default in a new thread.
        :param ticker: starts driving ``scheduler`` in the background and returns an event which stops it.
        :param clock: source of the current time.
        """
        self.job: Callable = job
        self.has_credentials: Callable[[], bool] = has_credentials
        self.scheduler: schedule.Scheduler = scheduler if scheduler is not None else schedule.Scheduler()
        self.runner: Callable[[Callable], None] = runner
        self.ticker: Callable[[schedule.Scheduler], threading.Event] = ticker
        self.clock: Callable[[], datetime] = clock
        self.state: str = SyncScheduler.IDLE
        self.interval: int | None = None
        self.last_run: datetime | None = None
        self._job: schedule.Job | None = None
        self._cease: threading.Event | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self.state == SyncScheduler.RUNNING

    @property
    def next_run(self) -> datetime | None:
        """
        :return: when the job fires next, or None if idle.
        """
        return self._job.next_run if self._job is not None else None

    def start(self, interval_minutes: int) -> bool:
        """
        Starts firing the job every ``interval_minutes``. Any timer already running is replaced, so calling this
        repeatedly never schedules the job twice. The first firing happens one full interval from now.

        :param interval_minutes: the interval, in minutes.
        :return: True if the scheduler is running, False if no credentials are configured. Without credentials any
            running timer is stopped.
        """
        if interval_minutes < 1:
            raise ValueError('Sync interval must be at least one minute.')
        if not self.has_credentials():
            logging.warning('Autosync not started: no credentials configured.')
            self.stop()
            return False

        with self._lock:
            self._cancel_job()
            self._job = self.scheduler.every(interval_minutes).minutes.do(self.fire)
            self.interval = interval_minutes
            if self._cease is None:
                self._cease = self.ticker(self.scheduler)
            self.state = SyncScheduler.RUNNING
        logging.info('Autosync every {0} minute(s), next sync at {1}.'.format(
            interval_minutes, self.next_run.strftime('%H:%M:%S') if self.next_run else 'unknown'))
        return True

    def stop(self) -> None:
        """
        Stops the timer. Does nothing if the scheduler is idle.
        """
        with self._lock:
            if self.state == SyncScheduler.IDLE:
                return
            self._cancel_job()
            if self._cease is not None:
                self._cease.set()
                self._cease = None
            self.state = SyncScheduler.IDLE
            self.interval = None
        logging.info('Autosync stopped.')

    def set_interval(self, interval_minutes: int) -> None:
        """
        Changes the interval. A running scheduler restarts its timer with the new interval right away.

        :param interval_minutes: the new interval, in minutes.
        """
        if self.is_running:
            self.start(interval_minutes)

    def _cancel_job(self) -> None:
        if self._job is not None:
            self.scheduler.cancel_job(self._job)
            self._job = None

    def fire(self) -> None:
        """
        Called by ``schedule`` whenever the interval elapses. Hands the job to the runner.
        """
        self.runner(self.run_job)

    def run_job(self) -> None:
        """
        Runs the job once, logging its outcome. Never raises.
        """
        self.last_run = self.clock()
        try:
            result = self.job()
        except Exception:
            logging.exception('Scheduled sync failed.')
            return
        logging.info('Scheduled sync: {}'.format(result))
