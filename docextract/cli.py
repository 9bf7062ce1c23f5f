"""
DocExtract CLI commands

This module provides the command-line interface for DocExtract operations.
"""

import asyncio
import json
from pathlib import Path

import click

from docextract.config.docextract_config import DocExtractConfig, setup_logging
from docextract.db.connection import Database
from docextract.db.repository import PatternRepository, PatternSampleRepository, RuleRepository
from docextract.learning.learner import PatternLearner
from docextract.learning.pattern_store import PatternStore
from docextract.models.patterns import PatternMergeStrategy
from docextract.processors.pipeline import BatchProgress, DocumentProcessingPipeline
from docextract.rules.rule_engine import RuleEngine

MERGE_STRATEGIES = [s.value for s in PatternMergeStrategy]


def _load_config(ctx) -> DocExtractConfig:
    config_path = ctx.obj.get('config_path')
    config = DocExtractConfig.from_file(config_path) if config_path else DocExtractConfig.get_instance()
    if ctx.obj.get('log_level'):
        config.set('logging.level', ctx.obj['log_level'])
    setup_logging(config)
    return config


def _open_database(config: DocExtractConfig) -> Database:
    db = Database(config)
    db.create_tables()
    return db


def _learner(db: Database, config: DocExtractConfig) -> PatternLearner:
    store = PatternStore(PatternRepository(db), PatternSampleRepository(db), config)
    return PatternLearner(store, config=config)


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']), help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """DocExtract command-line interface"""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['log_level'] = log_level


@cli.command()
@click.option('--db-type', type=click.Choice(['sqlite', 'postgresql']), help='Database type')
@click.option('--db-path', type=click.Path(), help='SQLite database path')
@click.option('--save', is_flag=True, help='Save the resulting configuration to ~/.docextract/config.yaml')
@click.pass_context
def init(ctx, db_type, db_path, save):
    """Create the database tables"""
    try:
        config = _load_config(ctx)
        if db_type:
            config.set('database.type', db_type)
        if db_path:
            config.set('database.path', db_path)

        db = _open_database(config)
        db.dispose()
        if save:
            config.save()
            click.echo(f"Configuration saved to {config.config_file}")

        click.echo("✅ DocExtract initialized")
        click.echo(f"   Database: {config.get('database.type')} {config.get('database.path', '')}")
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.argument('files', nargs=-1, required=True, type=click.Path())
@click.option('--template-id', help='Template to map extracted fields onto')
@click.option('--template-category', help='Template category used for rule matching')
@click.option('--format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def process(ctx, files, template_id, template_category, format):
    """Process one or more documents"""
    try:
        config = _load_config(ctx)
        db = _open_database(config)
        pipeline = DocumentProcessingPipeline.from_database(db, config)

        def report(progress: BatchProgress):
            if format == 'table':
                click.echo(f"[{progress.completed}/{progress.total}] {progress.current_file}", err=True)

        documents = asyncio.run(pipeline.process_batch(
            list(files), progress=report, template_id=template_id, template_category=template_category
        ))

        if format == 'json':
            payload = [d.model_dump(mode='json', exclude={'raw_text'}) for d in documents]
            click.echo(json.dumps(payload, indent=2))
            return

        for document in documents:
            click.echo(f"\n{document.file_name}: {document.status.value}")
            if document.error_message:
                click.echo(f"   Error: {document.error_message}")
                continue
            click.echo(f"   Type: {document.document_type.value}  Supplier: {document.supplier}")
            click.echo(f"   Confidence: {document.overall_confidence:.2f}")
            for extracted in document.fields:
                click.echo(
                    f"   {extracted.field_name:<24} {extracted.value:<30} "
                    f"{extracted.confidence:.2f} ({extracted.source.value})"
                )
            for reason in document.review_reasons:
                click.echo(f"   Review: {reason}")
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.group()
def patterns():
    """Manage learned patterns"""
    pass


@patterns.command('export')
@click.option('--supplier', help='Only export patterns of this supplier')
@click.option('--output', type=click.Path(), help='Write to file instead of stdout')
@click.pass_context
def export_patterns(ctx, supplier, output):
    """Export learned patterns as JSON"""
    try:
        config = _load_config(ctx)
        payload = _learner(_open_database(config), config).export_patterns(supplier)
        if output:
            Path(output).write_text(payload)
            click.echo(f"✅ Patterns exported to {output}")
        else:
            click.echo(payload)
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@patterns.command('import')
@click.argument('file', type=click.Path(exists=True))
@click.option('--strategy', type=click.Choice(MERGE_STRATEGIES), default=PatternMergeStrategy.SKIP_EXISTING.value,
              help='How to treat patterns that already exist')
@click.pass_context
def import_patterns(ctx, file, strategy):
    """Import learned patterns from a JSON export"""
    try:
        config = _load_config(ctx)
        learner = _learner(_open_database(config), config)
        result = learner.import_patterns(Path(file).read_text(), PatternMergeStrategy(strategy))

        click.echo(f"{'✅' if result.success else '⚠️'} Imported {result.imported_patterns} of {result.total_patterns}")
        click.echo(f"   Skipped: {result.skipped_patterns}  Failed: {result.failed_patterns}")
        for error in result.errors:
            click.echo(f"   {error}", err=True)
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.group()
def rules():
    """Manage mapping rules"""
    pass


@rules.command('list')
@click.option('--active-only', is_flag=True, help='Only list active rules')
@click.option('--format', type=click.Choice(['table', 'json', 'simple']), default='table', help='Output format')
@click.pass_context
def list_rules(ctx, active_only, format):
    """List mapping rules"""
    try:
        config = _load_config(ctx)
        engine = RuleEngine(RuleRepository(_open_database(config)), config=config)
        found = engine.get_active_rules() if active_only else engine.get_all_rules()

        if not found:
            click.echo("No rules found.")
            return

        if format == 'json':
            click.echo(json.dumps([r.model_dump(mode='json') for r in found], indent=2))
        elif format == 'simple':
            for rule in found:
                click.echo(f"{rule.id}\t{rule.name}")
        else:
            click.echo(f"\nFound {len(found)} rule(s):\n")
            click.echo(f"{'Name':<30} {'Priority':>8} {'Rate':>6} {'Used':>6} {'Active':>7}")
            click.echo("-" * 62)
            for rule in found:
                click.echo(
                    f"{rule.name[:30]:<30} {rule.priority:>8} {rule.success_rate:>6.2f} "
                    f"{rule.usage_count:>6} {'yes' if rule.is_active else 'no':>7}"
                )
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


@cli.command()
@click.pass_context
def stats(ctx):
    """Show learning, rule and document statistics"""
    try:
        config = _load_config(ctx)
        db = _open_database(config)
        learning = _learner(db, config).get_learning_statistics()
        rule_stats = RuleEngine(RuleRepository(db), config=config).get_statistics()
        pipeline = DocumentProcessingPipeline.from_database(db, config)

        click.echo("\nPatterns:")
        click.echo(f"   Total: {learning.total_patterns}  Active: {learning.active_patterns}  "
                   f"Suppliers: {learning.suppliers}")
        click.echo(f"   Average success rate: {learning.average_success_rate:.2f}")
        click.echo(f"   Corpus samples: {learning.corpus_samples}")
        click.echo("\nRules:")
        click.echo(f"   Total: {rule_stats.total_rules}  Active: {rule_stats.active_rules}  "
                   f"Applications: {rule_stats.total_applications}")
        click.echo(f"   Overall success rate: {rule_stats.overall_success_rate:.2f}")
        click.echo("\nDocuments:")
        for status, count in sorted(pipeline.get_processing_statistics().get('stored_by_status', {}).items()):
            click.echo(f"   {status}: {count}")
    except Exception as e:
        click.echo(f"❌ Error: {str(e)}", err=True)
        raise click.Abort()


if __name__ == '__main__':
    cli()
