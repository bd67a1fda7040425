# service/hooks.py
import json

from pubsub_sdk.contracts import SubscriberHooks


class ServiceHooks(SubscriberHooks):
    def setup(self, ctx):
        self.logger = ctx.logger
        self.logger.info("Loaded example hooks", {"queue_name": ctx.config.queue_name})

    def handle(self, body, topic_name, ack=None):
        # (1) Publishers send JSON; anything else is a bad message -> error path
        payload = json.loads(body)

        # (2) Do your work here; returning normally means success
        #     (the runner deletes the message when auto_delete is on).
        self.logger.info("Handled message", {"topic": topic_name, "keys": sorted(payload)})
        return payload

    def on_error(self, error):
        self.logger.warning("Message failed, will be redelivered", {"error": str(error)})
