import logging
import signal
import threading

from django.apps import apps
from django.conf import settings
from django.core.management import call_command
from django.core.management.base import BaseCommand, CommandError
from django.core.servers.basehttp import ThreadedWSGIServer, WSGIRequestHandler
from django.core.wsgi import get_wsgi_application
from django.db import connections

from orders.consumer import OrderConsumer
from orders.exceptions import PersistenceError, StartupConnectionError

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Warms the order cache, consumes the orders topic and serves the read API"

    def add_arguments(self, parser):
        parser.add_argument("--addr", default="0.0.0.0")
        parser.add_argument("--port", type=int, default=settings.HTTP_PORT)
        parser.add_argument(
            "--skip-migrate",
            action="store_true",
            help="Do not apply migrations before starting",
        )

    def handle(self, *args, **options):
        app = apps.get_app_config("orders")
        shutdown = threading.Event()

        try:
            app.store.ping()
            if not options["skip_migrate"]:
                call_command("migrate", interactive=False, verbosity=0)
            loaded = app.cache.warmup(app.store)
        except (StartupConnectionError, PersistenceError) as e:
            raise CommandError(f"Database is not available: {e}")
        self.stdout.write(self.style.SUCCESS(f"Loaded {loaded} orders into cache"))

        consumer = OrderConsumer(
            app.store,
            app.cache,
            topic=settings.ORDERS_TOPIC,
            durable_name=settings.ORDERS_DURABLE_NAME,
            ack_wait_seconds=settings.ORDERS_ACK_WAIT_SECONDS,
            poll_timeout_ms=settings.ORDERS_POLL_TIMEOUT_MS,
            redelivery_delay=settings.ORDERS_REDELIVERY_DELAY_SECONDS,
        )
        try:
            consumer.connect()
        except StartupConnectionError as e:
            raise CommandError(str(e))
        consumer.start()

        httpd = ThreadedWSGIServer(
            (options["addr"], options["port"]), WSGIRequestHandler
        )
        httpd.set_app(get_wsgi_application())
        server_thread = threading.Thread(
            target=httpd.serve_forever, name="http-server", daemon=True
        )
        server_thread.start()
        self.stdout.write(
            self.style.SUCCESS(
                f"Serving orders on http://{options['addr']}:{options['port']}/orders/"
            )
        )

        def request_shutdown(signum, frame):
            logger.info(f"Received signal {signum}, shutting down")
            shutdown.set()

        signal.signal(signal.SIGINT, request_shutdown)
        signal.signal(signal.SIGTERM, request_shutdown)

        shutdown.wait()
        self.shutdown(consumer, httpd, server_thread)

    def shutdown(self, consumer, httpd, server_thread):
        # Сначала консьюмер (отписка и закрытие), потом HTTP.
        grace = settings.SHUTDOWN_GRACE_SECONDS
        if not consumer.stop(timeout=grace):
            self.stderr.write(self.style.ERROR("Kafka consumer did not stop in time"))
        httpd.shutdown()
        httpd.server_close()
        server_thread.join(grace)
        connections.close_all()
        self.stdout.write(self.style.SUCCESS("Order service stopped"))
