# nomenclador/cli.py
"""
Comandos de línea para poblar y consultar el almacén de nombres comunes.

    nomenclador init            reglas de mayúsculas + taxones IUCN
    nomenclador aggregate       nombres comunes (y sinónimos) desde los cachés
    nomenclador detect-conflicts
    nomenclador report
    nomenclador best-name
"""
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import click
from sqlalchemy.orm import Session

from . import config
from .config import ConfigError
from .db import init_db, make_engine, make_session_factory, open_readonly_cache
from .ingestors import SOURCES
from .ingestors.base import IngestCancelled, IngestStats
from .ingestors.iucn import import_taxa
from .services.ambiguity import AmbiguityCache
from .services.caps import detect_caps_mismatches, import_caps_file, load_caps_rules, refresh_display_names
from .services.conflicts import clear_conflicts, detect_ambiguous_conflicts
from .services.normalize import apply_capitalization, upper_first
from .services.reports import REPORTS, build_report, export_frame
from .services.runs import run_summaries
from .services.selector import get_best_names_for_taxa

log = logging.getLogger(__name__)

# orden de las fuentes con --source all; los sinónimos, si se piden, van antes que todos los nombres
AGGREGATE_ORDER = ("iucn", "wikidata", "wikipedia", "col")


class AppContext:
    def __init__(self, database_url: Optional[str]):
        self.engine = make_engine(database_url)
        init_db(self.engine)
        self.sessions = make_session_factory(self.engine)
        self.ambiguity = AmbiguityCache()

    def session(self) -> Session:
        return self.sessions()


@click.group(name="nomenclador")
@click.option("--database-url", envvar="DATABASE_URL", help="URL SQLAlchemy de la base principal.")
@click.option("-v", "--verbose", count=True, help="-v: INFO, -vv: DEBUG.")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], verbose: int):
    """Resolución y desambiguación de nombres comunes por taxón."""
    level = logging.WARNING if verbose == 0 else logging.INFO if verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        ctx.obj = AppContext(database_url)
    except ConfigError as e:
        raise click.UsageError(str(e)) from e


@contextmanager
def _cancellable() -> Iterator[threading.Event]:
    """Ctrl+C marca la cancelación; la pasada se detiene entre filas."""
    cancel = threading.Event()
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum, frame):
        click.echo("Cancelando tras la fila actual…", err=True)
        cancel.set()

    try:
        signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # fuera del hilo principal (p. ej. CliRunner en otro hilo)
        previous = None
    try:
        yield cancel
    finally:
        if previous is not None:
            signal.signal(signal.SIGINT, previous)


def _echo_stats(label: str, stats: IngestStats) -> None:
    d = stats.as_dict()
    click.echo(
        f"{label}: procesados={d['processed']} añadidos={d['added']} "
        f"emparejados={d['matched']} sin_taxón={d['skipped_no_taxon']} errores={d['errors']}"
    )


# ------------------------------------------------------------
# init
# ------------------------------------------------------------
@cli.command("init")
@click.option("--caps-file", type=click.Path(dir_okay=False), default=lambda: config.CAPS_FILE_PATH,
              show_default="CAPS_FILE_PATH")
@click.option("--iucn-database", type=click.Path(dir_okay=False), default=lambda: config.IUCN_DATABASE_PATH,
              help="SQLite con la vista de taxonomía IUCN.")
@click.option("--skip-caps", is_flag=True)
@click.option("--skip-taxa", is_flag=True)
@click.option("--limit", type=int, default=None, help="Máximo de taxones a importar.")
@click.pass_obj
def init_cmd(app: AppContext, caps_file, iucn_database, skip_caps, skip_taxa, limit):
    """Carga caps.txt y crea los taxones desde la taxonomía IUCN."""
    with app.session() as db:
        if not skip_caps:
            try:
                res = import_caps_file(db, caps_file)
            except FileNotFoundError as e:
                raise click.ClickException(str(e)) from e
            db.commit()
            click.echo(f"Reglas de mayúsculas: {res['inserted']} cargadas ({res['skipped']} duplicadas)")

        if not skip_taxa:
            taxonomy = open_readonly_cache(iucn_database, "IUCN taxonomía")
            if taxonomy is None:
                click.echo("Taxonomía IUCN no disponible; no se importan taxones.", err=True)
                return
            try:
                with _cancellable() as cancel:
                    stats = import_taxa(db, taxonomy, cancel=cancel, limit=limit)
            except IngestCancelled as e:
                raise click.ClickException(f"Importación cancelada: {e}") from e
            finally:
                taxonomy.dispose()
            _echo_stats("Taxones IUCN", stats)


# ------------------------------------------------------------
# aggregate
# ------------------------------------------------------------
@cli.command("aggregate")
@click.option("--source", "source_name", type=click.Choice(list(SOURCES) + ["all"]), default="all",
              show_default=True)
@click.option("--include-synonyms", is_flag=True, help="Importa también sinónimos científicos (IUCN, COL).")
@click.option("--limit", type=int, default=None, help="Máximo de registros por fuente.")
@click.option("--iucn-cache", type=click.Path(dir_okay=False), default=lambda: config.IUCN_API_CACHE_PATH)
@click.option("--wikidata-cache", type=click.Path(dir_okay=False), default=lambda: config.WIKIDATA_CACHE_PATH)
@click.option("--wikipedia-cache", type=click.Path(dir_okay=False), default=lambda: config.WIKIPEDIA_CACHE_PATH)
@click.option("--col-path", type=click.Path(dir_okay=False), default=lambda: config.COL_SQLITE_PATH)
@click.pass_obj
def aggregate_cmd(app: AppContext, source_name, include_synonyms, limit,
                  iucn_cache, wikidata_cache, wikipedia_cache, col_path):
    """Agrega nombres comunes desde los cachés locales de cada fuente."""
    paths = {"iucn": iucn_cache, "wikidata": wikidata_cache, "wikipedia": wikipedia_cache, "col": col_path}
    names = AGGREGATE_ORDER if source_name == "all" else (source_name,)

    caches = {}
    for name in names:
        engine = open_readonly_cache(paths[name], SOURCES[name].title)
        if engine is not None:
            caches[name] = engine
        else:
            click.echo(f"{SOURCES[name].title}: caché no disponible, se omite.", err=True)

    try:
        with app.session() as db, _cancellable() as cancel:
            if include_synonyms:
                for name, engine in caches.items():
                    adapter = SOURCES[name]
                    if adapter.ingest_synonyms is not None:
                        stats = adapter.ingest_synonyms(db, engine, cancel=cancel, limit=limit)
                        _echo_stats(f"Sinónimos {adapter.title}", stats)
            for name, engine in caches.items():
                adapter = SOURCES[name]
                stats = adapter.ingest(db, engine, ambiguity=app.ambiguity, cancel=cancel, limit=limit)
                _echo_stats(adapter.title, stats)
    except IngestCancelled as e:
        raise click.ClickException(f"Agregación cancelada: {e}") from e
    finally:
        for engine in caches.values():
            engine.dispose()


# ------------------------------------------------------------
# detect-conflicts
# ------------------------------------------------------------
@cli.command("detect-conflicts")
@click.option("--language", default="en", show_default=True)
@click.option("--include-fossil", is_flag=True)
@click.option("--clear-existing", is_flag=True, help="Borra los conflictos previos antes de detectar.")
@click.option("--caps", "with_caps", is_flag=True, help="Detecta también desajustes de mayúsculas.")
@click.pass_obj
def detect_conflicts_cmd(app: AppContext, language, include_fossil, clear_existing, with_caps):
    """Registra pares de taxones que comparten nombre común (por reino)."""
    with app.session() as db:
        if clear_existing:
            n = clear_conflicts(db)
            click.echo(f"Conflictos borrados: {n}")
        created = detect_ambiguous_conflicts(db, language, include_fossil=include_fossil)
        click.echo(f"Conflictos 'ambiguous' registrados: {created}")
        if with_caps:
            caps = detect_caps_mismatches(db, load_caps_rules(db), language)
            click.echo(f"Conflictos 'caps_mismatch' registrados: {caps}")
        db.commit()


# ------------------------------------------------------------
# report
# ------------------------------------------------------------
@cli.command("report")
@click.option("--report", "report_name", type=click.Choice(list(REPORTS)), default="summary", show_default=True)
@click.option("--limit", type=int, default=None)
@click.option("--kingdom", default=None, help="Filtra por reino (sin distinguir mayúsculas).")
@click.option("--language", default="en", show_default=True)
@click.option("-o", "--output", type=click.Path(dir_okay=False), default=None, help=".csv, .tsv o .xlsx")
@click.pass_obj
def report_cmd(app: AppContext, report_name, limit, kingdom, language, output):
    """Extrae un reporte como tabla (a archivo o a pantalla)."""
    with app.session() as db:
        df = build_report(db, report_name, language=language, kingdom=kingdom, limit=limit)
    if output:
        export_frame(df, output)
        click.echo(f"{report_name}: {len(df)} filas → {output}")
    elif df.empty:
        click.echo(f"{report_name}: sin filas")
    else:
        click.echo(df.to_string(index=False))


# ------------------------------------------------------------
# best-name / refresh-display / runs
# ------------------------------------------------------------
@cli.command("best-name")
@click.argument("taxon_ids", nargs=-1, type=int, required=True)
@click.option("--language", default="en", show_default=True)
@click.option("--allow-ambiguous", is_flag=True)
@click.pass_obj
def best_name_cmd(app: AppContext, taxon_ids, language, allow_ambiguous):
    """Mejor nombre común de uno o varios taxones."""
    with app.session() as db:
        rules = load_caps_rules(db)
        best = get_best_names_for_taxa(db, taxon_ids, language, allow_ambiguous, app.ambiguity)
    for tid in taxon_ids:
        b = best.get(tid)
        if b is None:
            click.echo(f"{tid}\t-")
            continue
        shown = upper_first(apply_capitalization(b.display_name, rules))
        flag = " (ambiguo)" if b.is_ambiguous else ""
        click.echo(f"{tid}\t{shown}\t[{b.source}]{flag}")


@cli.command("refresh-display")
@click.option("--language", default="en", show_default=True)
@click.pass_obj
def refresh_display_cmd(app: AppContext, language):
    """Recalcula display_name aplicando las reglas de mayúsculas."""
    with app.session() as db:
        changed = refresh_display_names(db, load_caps_rules(db), language)
        db.commit()
    click.echo(f"display_name actualizados: {changed}")


@cli.command("runs")
@click.pass_obj
def runs_cmd(app: AppContext):
    """Resumen de la bitácora de importaciones por tipo."""
    with app.session() as db:
        summaries = run_summaries(db)
    if not summaries:
        click.echo("Sin corridas registradas.")
    for s in summaries:
        status = "ok" if s.has_completed else "sin completar"
        click.echo(f"{s.import_type}\t{s.last_ended_at or '-'}\t+{s.total_added}\t{status}")


def main():
    cli()


if __name__ == "__main__":
    main()
