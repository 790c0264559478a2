from fastapi import Depends, Request
from sqlalchemy.orm import Session

from userbase.db.session import get_db
from userbase.middleware.auth import get_settings
from userbase.services.alerts import AlertNotifier
from userbase.services.health import HealthChecker
from userbase.services.hive_client import HiveClient
from userbase.services.linking import IdentityLinker
from userbase.services.mailer import SmtpMailer
from userbase.services.merge import MergeEngine
from userbase.services.provisioning import AccountProvisioner


def get_hive_client(request: Request) -> HiveClient:
    return request.app.state.hive_client


def get_mailer(request: Request) -> SmtpMailer:
    return request.app.state.mailer


def get_alerts(request: Request) -> AlertNotifier:
    return request.app.state.alerts


def get_health_checker(request: Request) -> HealthChecker:
    return request.app.state.health_checker


def get_provisioner(
    request: Request,
    db: Session = Depends(get_db),
    hive_client: HiveClient = Depends(get_hive_client),
    mailer: SmtpMailer = Depends(get_mailer),
    alerts: AlertNotifier = Depends(get_alerts),
) -> AccountProvisioner:
    return AccountProvisioner(db, get_settings(request), hive_client=hive_client, mailer=mailer, alerts=alerts)


def get_linker(
    request: Request,
    db: Session = Depends(get_db),
    hive_client: HiveClient = Depends(get_hive_client),
) -> IdentityLinker:
    return IdentityLinker(db, get_settings(request), hive_client)


def get_merge_engine(
    request: Request,
    db: Session = Depends(get_db),
    hive_client: HiveClient = Depends(get_hive_client),
    alerts: AlertNotifier = Depends(get_alerts),
) -> MergeEngine:
    return MergeEngine(db, get_settings(request), hive_client, alerts=alerts)
