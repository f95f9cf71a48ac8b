"""Seed the shared knowledge base (kb_chunks) with CPF and budgeting basics.

Needs DATABASE_URL and the key for the configured embeddings provider, and a
database with schema.sql applied.
"""

import asyncio
import sys

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from foracle.config import settings
from foracle.vectors.embeddings import build_embeddings_client
from foracle.vectors.retrieval import IngestDocument, RetrievalService
from foracle.vectors.store import KNOWLEDGE_BASE, PostgresVectorStore

KNOWLEDGE_DOCUMENTS = [
    IngestDocument(
        doc_id="cpf-basics",
        content="""
# CPF Basics

The Central Provident Fund (CPF) is Singapore's compulsory savings scheme for citizens
and permanent residents. Contributions come from both the employee and the employer
and are split across three accounts.

## Contribution rates by age

- 55 and below: employee 20%, employer 17% (37% total)
- Above 55 to 60: employee 17%, employer 15.5%
- Above 60 to 65: employee 11.5%, employer 12%
- Above 65 to 70: employee 7.5%, employer 9%
- Above 70: employee 5%, employer 7.5%

Ordinary wages above S$8,000 a month do not attract further contributions.

## Accounts

- Ordinary Account (OA): housing, approved investments, education.
- Special Account (SA): retirement savings and retirement-related products.
- MediSave Account (MA): hospitalisation and approved medical insurance.

For members aged 35 and below, about 62% of each contribution goes to the OA,
16% to the SA and 22% to MediSave.
""".strip(),
        metadata={"source": "cpf-board", "category": "retirement"},
    ),
    IngestDocument(
        doc_id="cpf-ow-aw-ceiling",
        content="""
# Ordinary Wages, Additional Wages and the AW ceiling

Ordinary Wages (OW) are earnings for work done in a month and payable by the 14th of
the following month: basic salary, fixed monthly allowances, regular overtime.

Additional Wages (AW) are everything else, usually irregular or annual payments:
performance bonuses, the 13th month (AWS), leave encashment and one-off incentives.

## AW ceiling

AW ceiling = S$102,000 - total Ordinary Wages subject to CPF for the calendar year.

Because OW is itself capped at S$8,000 a month, the OW counted for the year is at most
S$96,000, leaving an AW ceiling of at least S$6,000.

Example: a S$6,000 monthly salary gives S$72,000 of OW, so up to S$30,000 of bonus
attracts CPF. A S$10,000 salary is capped at S$96,000 of OW, so only the first
S$6,000 of bonus attracts CPF.
""".strip(),
        metadata={"source": "cpf-board", "category": "retirement"},
    ),
    IngestDocument(
        doc_id="emergency-fund",
        content="""
# Emergency fund guidelines

An emergency fund is cash kept aside for job loss, medical bills or urgent repairs.

## How much

- At least 3 to 6 months of essential expenses.
- 6 to 9 months is comfortable; 9 to 12 months is conservative.

Foracle rates the balance left after a planned expense against monthly net income:
- Green: 9 or more months of net income.
- Yellow: 6 to 9 months.
- Red: fewer than 6 months.

## Where to keep it

Keep it liquid, low risk and separate from daily spending: high-yield savings
accounts, Singapore Savings Bonds or short fixed deposits.
""".strip(),
        metadata={"source": "financial-planning", "category": "savings"},
    ),
    IngestDocument(
        doc_id="budgeting-basics",
        content="""
# Budgeting fundamentals

A budget is a plan for where each month's income goes.

## The 50/30/20 rule

- 50% for needs: housing, utilities, groceries, transport, insurance.
- 30% for wants: dining out, entertainment, hobbies, travel.
- 20% for savings and debt repayment beyond the minimum.

## Tips

- Track daily spending for a month before setting category limits.
- Pay yourself first by moving savings out on payday.
- Review recurring subscriptions every quarter.
- Plan for yearly and quarterly bills by setting aside a monthly share.
""".strip(),
        metadata={"source": "financial-planning", "category": "budgeting"},
    ),
]


async def seed() -> int:
    embedder = build_embeddings_client(
        settings.embeddings_provider,
        voyage_api_key=settings.voyage_api_key,
        openai_api_key=settings.openai_api_key,
        gemini_api_key=settings.gemini_api_key,
    )
    if embedder is None:
        print(f"ERROR: no API key set for embeddings provider '{settings.embeddings_provider}'")
        return 1

    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        open=False,
        kwargs={"autocommit": True, "row_factory": dict_row},
    )
    await pool.open()
    try:
        retrieval = RetrievalService(PostgresVectorStore(pool), embedder)
        for document in KNOWLEDGE_DOCUMENTS:
            result = await retrieval.ingest(KNOWLEDGE_BASE, document)
            print(f"  OK: {result.doc_id:20s} {result.chunks_created} chunk(s)")

        documents = await retrieval.list_documents(KNOWLEDGE_BASE)
        print(f"\nDone! {len(documents)} document(s) in the knowledge base.")
    finally:
        await pool.close()
    return 0


def main():
    if not settings.database_url:
        print("ERROR: DATABASE_URL env var is not set")
        sys.exit(1)
    sys.exit(asyncio.run(seed()))


if __name__ == "__main__":
    main()
