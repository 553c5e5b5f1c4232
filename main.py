import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List

from aggregation import derive_collection_id
from auth import CallerCredentials, sign_request
from client_tools import generate_keypair
from confidential_aggregation_system import (
    ConfidentialAggregationSystem,
    create_group_payload,
    create_room_payload,
    finalize_group_payload,
    room_votes_payload,
    score_payload,
)
from config import SystemConfig, load_config
from utils import create_performance_report, save_results, setup_logging

logger = logging.getLogger(__name__)


class AggregationDemo:
    def __init__(self, config: SystemConfig, key_bits: int):
        self.config = config
        self.owner = CallerCredentials.generate()
        self.system = ConfidentialAggregationSystem(self.owner.identity, config)
        self.keys = generate_keypair(key_bits)
        self.results: Dict[str, Any] = {}

    def _send(self, credentials: CallerCredentials, action: str, collection_id: bytes,
              payload: Dict[str, Any] = None):
        request = sign_request(credentials, action, collection_id.hex(), payload,
                               timestamp=self.system.clock())
        return self.system.handle(request)

    def run_room(self, member_ids: List[int], ballots: List[List[int]]) -> Dict[str, Any]:
        room_id = derive_collection_id("demo-room")
        self._send(self.owner, 'create_room', room_id,
                   create_room_payload(member_ids, self.keys.public_key))

        for ballot in ballots:
            voter = CallerCredentials.generate()
            votes = {m: self.keys.encrypt(v) for m, v in zip(member_ids, ballot)}
            self._send(voter, 'submit_votes', room_id,
                       room_votes_payload(self.keys.public_key, votes))

        self._send(self.owner, 'finalize_room', room_id)
        record = self.system.get_finalized_room(room_id)

        totals = {m: self.keys.decrypt(record.total_for(m)) for m in member_ids}
        expected = {m: sum(b[i] for b in ballots) for i, m in enumerate(member_ids)}
        logger.info(f"Room totals: {totals} (participants={record.participant_count})")

        return {
            'room_id': room_id.hex(),
            'participants': record.participant_count,
            'totals': totals,
            'expected': expected,
            'correct': totals == expected
        }

    def run_group(self, scores: List[int]) -> Dict[str, Any]:
        group_id = derive_collection_id("demo-group")
        self._send(self.owner, 'create_group', group_id,
                   create_group_payload(self.keys.public_key))

        for score in scores:
            member = CallerCredentials.generate()
            self._send(member, 'submit_score', group_id, score_payload(self.keys.encrypt(score)))

        self._send(self.owner, 'finalize_group', group_id,
                   finalize_group_payload(self.keys.public_key))
        result = self.system.get_group_result(group_id)

        decrypted = self.keys.decrypt(result.encrypted_sum)
        if result.averaged:
            average = decrypted
        else:
            average = decrypted / result.count if result.count else 0.0
        logger.info(f"Group result: count={result.count}, average={average}")

        return {
            'group_id': group_id.hex(),
            'count': result.count,
            'averaged_before_publishing': result.averaged,
            'decrypted': decrypted,
            'average': average
        }

    def run(self, member_ids: List[int], ballots: List[List[int]], scores: List[int]) -> Dict[str, Any]:
        self.results['room'] = self.run_room(member_ids, ballots)
        self.results['group'] = self.run_group(scores)
        self.results['events'] = [type(e).__name__ for e in self.system.event_log.events]
        self.results['performance'] = self.system.performance_monitor.get_summary()
        return self.results


def main():
    parser = argparse.ArgumentParser(
        description='Confidential aggregation demo')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--key-bits', type=int, default=1024,
                        help='Paillier modulus size for the demo clients')
    parser.add_argument('--save-results', action='store_true',
                        help='Write results and a performance report to results_dir')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    setup_logging(config.log_level, log_dir=config.log_dir)

    demo = AggregationDemo(config, args.key_bits)
    results = demo.run(
        member_ids=[1, 2, 3],
        ballots=[[100, 200, 300], [100, 200, 300]],
        scores=[95, 105, 100]
    )

    print("=" * 80)
    print("CONFIDENTIAL AGGREGATION - DEMO")
    print("=" * 80)
    print(f"Room totals:   {results['room']['totals']} "
          f"(participants: {results['room']['participants']})")
    print(f"Group result:  count={results['group']['count']}, "
          f"average={results['group']['average']}")
    print(f"Events:        {len(results['events'])}")
    print()
    print(create_performance_report(demo.system.performance_monitor))

    if args.save_results:
        save_results(results, config.results_dir / "demo_results.json")

    sys.exit(0 if results['room']['correct'] else 1)


if __name__ == "__main__":
    main()
