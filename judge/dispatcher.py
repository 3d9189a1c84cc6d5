import queue
import threading
import time

from . import config
from .exception import DuplicatedSubmissionIdError
from .pipeline import SubmissionPipeline
from .utils import logger


class Dispatcher(threading.Thread):
    """
    Worker pool in front of the submission pipeline.

    Submission ids wait in a bounded FIFO queue. Each id is handed to its own
    worker thread, which runs the whole pipeline for that submission; at most
    `MAX_WORKER_COUNT` workers run at once.
    """

    def __init__(
        self,
        pipeline: SubmissionPipeline,
        judge_config=None,
    ):
        super().__init__(daemon=True)
        self.pipeline = pipeline
        # read config
        settings = config.get_judge_settings(judge_config)
        self.do_run = True
        self.MAX_TASK_COUNT = settings['QUEUE_SIZE']
        self.queue = queue.Queue(self.MAX_TASK_COUNT)
        # manage workers
        self.MAX_WORKER_COUNT = settings['MAX_WORKER_COUNT']
        self.worker_count_lock = threading.Lock()
        self.worker_count = 0
        self.running = set()
        self.SWEEP_INTERVAL = settings['SWEEP_INTERVAL']
        self.last_sweep = 0.0

    def inc_worker(self, submission_id: str):
        with self.worker_count_lock:
            self.worker_count += 1
            self.running.add(submission_id)

    def dec_worker(self, submission_id: str):
        with self.worker_count_lock:
            self.worker_count -= 1
            self.running.discard(submission_id)

    def contains(self, submission_id: str) -> bool:
        with self.worker_count_lock:
            if submission_id in self.running:
                return True
        with self.queue.mutex:
            return submission_id in self.queue.queue

    def handle(self, submission_id: str):
        if self.contains(submission_id):
            raise DuplicatedSubmissionIdError(
                f'duplicated submission id {submission_id}.')
        self.queue.put_nowait(submission_id)
        logger().debug(
            f'queued submission [id={submission_id}, size={self.queue.qsize()}]'
        )

    def recover(self):
        '''Queue pending submissions that are neither queued nor running.'''
        for submission_id in self.pipeline.pending_submission_ids():
            try:
                self.handle(submission_id)
            except DuplicatedSubmissionIdError:
                continue
            except queue.Full:
                logger().warning(
                    'queue full while recovering, rest waits for the next sweep'
                )
                break
            logger().info(f'recovered pending submission [id={submission_id}]')

    def sweep(self):
        '''Force timed out submissions, then queue pending ones nobody holds.'''
        self.last_sweep = time.monotonic()
        try:
            forced = self.pipeline.fail_stuck_submissions()
            if forced:
                logger().warning(f'forced stuck submissions: {forced}')
            self.recover()
        except Exception as exc:
            logger().error(f'sweep stuck submissions failed: {exc}',
                           exc_info=True)

    def work(self, submission_id: str):
        try:
            self.pipeline.process(submission_id)
        except Exception as exc:
            # left in processing, the sweeper will force it after the timeout
            logger().error(
                f'pipeline crashed [id={submission_id}]: {exc}',
                exc_info=True,
            )
        finally:
            self.dec_worker(submission_id)

    def run(self):
        self.do_run = True
        logger().debug('start dispatcher loop')
        self.recover()
        while True:
            # end the loop
            if not self.do_run:
                logger().debug('exit dispatcher loop')
                break
            if time.monotonic() - self.last_sweep >= self.SWEEP_INTERVAL:
                self.sweep()
            # no submission need to be judged
            if self.queue.empty():
                time.sleep(0.1)
                continue
            # no space for new worker now
            if self.worker_count >= self.MAX_WORKER_COUNT:
                time.sleep(0.1)
                continue
            submission_id = self.queue.get()
            self.inc_worker(submission_id)
            threading.Thread(
                target=self.work,
                args=(submission_id, ),
                daemon=True,
            ).start()

    def stop(self):
        self.do_run = False
