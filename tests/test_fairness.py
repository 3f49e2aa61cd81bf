import secrets
import unittest

from fairflip.core.exceptions import FlipValidationError
from fairflip.core.fairness import (
    combine_seeds,
    determine_result,
    generate_proof,
    verify_bet_outcome,
    verify_seed,
)
from fairflip.core.rng import generate_seed, hash_seed


class TestSeedGenerator(unittest.TestCase):
    def test_seed_is_64_hex_chars(self):
        seed = generate_seed()
        self.assertEqual(len(seed), 64)
        int(seed, 16)

    def test_seeds_are_unique(self):
        seeds = {generate_seed() for _ in range(200)}
        self.assertEqual(len(seeds), 200)

    def test_hash_is_sha256_hex(self):
        # sha256("abc")
        self.assertEqual(
            hash_seed("abc"),
            "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
        )


class TestFairness(unittest.TestCase):
    def test_combine_and_result_are_deterministic(self):
        client, server = generate_seed(), generate_seed()
        first = combine_seeds(client, server)
        self.assertEqual(first, combine_seeds(client, server))
        self.assertEqual(determine_result(first), determine_result(first))

    def test_combine_is_order_sensitive(self):
        self.assertNotEqual(combine_seeds("a", "b"), combine_seeds("b", "a"))

    def test_result_uses_first_byte_parity(self):
        self.assertEqual(determine_result("00" + "f" * 62), "heads")
        self.assertEqual(determine_result("01" + "0" * 62), "tails")
        self.assertEqual(determine_result("fe" + "1" * 62), "heads")
        self.assertEqual(determine_result("ff" + "0" * 62), "tails")

    def test_every_first_byte_is_split_evenly(self):
        results = [determine_result(f"{byte:02x}" + "0" * 62) for byte in range(256)]
        self.assertEqual(results.count("heads"), 128)
        self.assertEqual(results.count("tails"), 128)

    def test_random_seeds_have_no_visible_bias(self):
        samples = 4000
        heads = sum(
            determine_result(combine_seeds(secrets.token_hex(32), secrets.token_hex(32))) == "heads"
            for _ in range(samples)
        )
        # 4000 fair flips: sd is ~32, so 8 sd either side
        self.assertTrue(1750 < heads < 2250, f"heads={heads}")

    def test_malformed_hash_is_rejected(self):
        with self.assertRaises(FlipValidationError):
            determine_result("z")
        with self.assertRaises(FlipValidationError):
            determine_result("zz" + "0" * 62)

    def test_verify_seed(self):
        seed, other = generate_seed(), generate_seed()
        self.assertTrue(verify_seed(seed, hash_seed(seed)))
        self.assertTrue(verify_seed(seed, hash_seed(seed).upper()))
        self.assertFalse(verify_seed(seed, hash_seed(other)))
        self.assertFalse(verify_seed(seed, ""))
        self.assertFalse(verify_seed(None, hash_seed(seed)))

    def test_verify_seed_rejects_non_hex_hash(self):
        seed = generate_seed()
        self.assertFalse(verify_seed(seed, "é" * 64))
        self.assertFalse(verify_seed(seed, "z" * 64))
        self.assertFalse(verify_seed(seed, hash_seed(seed)[:-1]))


class TestVerifyBetOutcome(unittest.TestCase):
    def setUp(self):
        self.client = generate_seed()
        self.server = generate_seed()
        self.combined = combine_seeds(self.client, self.server)
        self.result = determine_result(self.combined)

    def verify(self, **overrides):
        args = dict(
            client_seed=self.client,
            client_seed_hash=hash_seed(self.client),
            server_seed=self.server,
            server_seed_hash=hash_seed(self.server),
            combined_hash=self.combined,
            result=self.result,
        )
        args.update(overrides)
        return verify_bet_outcome(**args)

    def test_honest_bet_is_valid(self):
        self.assertEqual(self.verify(), {"valid": True, "errors": []})

    def test_swapped_server_seed_is_reported(self):
        outcome = self.verify(server_seed=generate_seed())
        self.assertFalse(outcome["valid"])
        self.assertIn("Server seed does not match server seed hash", outcome["errors"])
        self.assertIn("Combined hash does not match expected value", outcome["errors"])

    def test_wrong_client_seed_hash_is_reported(self):
        outcome = self.verify(client_seed_hash=hash_seed("something else"))
        self.assertEqual(outcome["errors"], ["Client seed does not match client seed hash"])

    def test_flipped_result_is_reported(self):
        flipped = "tails" if self.result == "heads" else "heads"
        outcome = self.verify(result=flipped)
        self.assertEqual(outcome["errors"], [f"Result should be {self.result}, got {flipped}"])

    def test_every_mismatch_is_listed(self):
        outcome = self.verify(
            client_seed_hash="0" * 64,
            server_seed_hash="1" * 64,
            combined_hash="ab" * 32,
            result="heads" if determine_result("ab" * 32) == "tails" else "tails",
        )
        self.assertEqual(len(outcome["errors"]), 4)

    def test_proof_recomputes_outcome(self):
        proof = generate_proof(
            "bet-1", self.client, hash_seed(self.client), self.server, hash_seed(self.server), "heads"
        )
        self.assertEqual(proof["combinedHash"], self.combined)
        self.assertEqual(proof["result"], self.result)
        self.assertEqual(proof["isWinner"], self.result == "heads")
        self.assertEqual(proof["betId"], "bet-1")

    def test_non_ascii_hashes_are_reported(self):
        outcome = self.verify(client_seed_hash="é" * 64, server_seed_hash="ü" * 64, combined_hash="ö" * 64)
        self.assertFalse(outcome["valid"])
        self.assertIn("Client seed does not match client seed hash", outcome["errors"])
        self.assertIn("Server seed does not match server seed hash", outcome["errors"])
        self.assertIn("Combined hash does not match expected value", outcome["errors"])
        self.assertEqual(len(outcome["errors"]), 4)

    def test_forfeited_proof_is_not_a_win(self):
        winning_side = self.result
        proof = generate_proof(
            "bet-2", self.client, hash_seed(self.client), self.server, hash_seed(self.server),
            winning_side, forfeited=True,
        )
        self.assertEqual(proof["result"], winning_side)
        self.assertFalse(proof["isWinner"])
        self.assertTrue(proof["forfeited"])


if __name__ == "__main__":
    unittest.main()
