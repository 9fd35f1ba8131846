# flowci_plan.py
# Example plan: build -> check, plus an always() report and a failure() notifier.
# Action paths are relative to the directory flowci is started from.
from __future__ import annotations

from flowci import action, job, retry, static_provider, wf


def plan():
    return wf(
        "example",
        job(
            "build",
            action("Build", "actions/build.sh", timeout="5m"),
            action("Report", "actions/report.sh", condition="always()"),
            outputs={"dist": "dist"},
            env={"TARGET": "linux"},
        ),
        job(
            "check",
            action("Check artifact", "actions/check.sh", retry=retry(2, backoff="constant", min_delay="1s")),
            inputs=["dist"],
        ),
        job(
            "notify",
            action("Notify", "actions/notify-failure.sh"),
            needs=["check"],
            condition="failure()",
        ),
        env={"CI": "true"},
        providers=[static_provider(FLOWCI_EXAMPLE="1")],
    )
