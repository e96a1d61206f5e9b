import argparse

import PsychWGCNA


def main():
    parser = argparse.ArgumentParser(description='Weighted gene co-expression network analysis of a psychiatric '
                                                 'RNA-seq cohort')
    parser.add_argument('counts', help='count table, genes in rows and samples in columns')
    parser.add_argument('metadata', help='sample information table with a sample_id column')
    parser.add_argument('--name', default='psychWGCNA')
    parser.add_argument('--sep', default=',')
    parser.add_argument('--outputPath', default=None)
    parser.add_argument('--power', type=int, default=None)
    parser.add_argument('--nTopGenes', type=int, default=None)
    parser.add_argument('--minModuleSize', type=int, default=30)
    parser.add_argument('--covariates', nargs='+', default=['diagnosis', 'ethnicity'])
    parser.add_argument('--reference', default='Control', help='reference level of diagnosis')
    args = parser.parse_args()

    psychWGCNA = PsychWGCNA.WGCNA(name=args.name, countPath=args.counts, sampleInfoPath=args.metadata,
                                  sep=args.sep, power=args.power, nTopGenes=args.nTopGenes,
                                  minModuleSize=args.minModuleSize, covariates=args.covariates,
                                  referenceLevels={'diagnosis': args.reference},
                                  save=True, outputPath=args.outputPath)
    psychWGCNA.runWGCNA()

    # add color for metadata
    if 'diagnosis' in psychWGCNA.datExpr.obs.columns:
        psychWGCNA.setMetadataColor('diagnosis', {args.reference: 'darkgrey',
                                                  'SCZ': 'darkred',
                                                  'BP': 'darkorange',
                                                  'MDD': 'darkblue'})
    if 'ethnicity' in psychWGCNA.datExpr.obs.columns:
        psychWGCNA.setMetadataColor('ethnicity', {'European': 'thistle',
                                                  'African American': 'plum',
                                                  'Hispanic': 'violet',
                                                  'Asian': 'purple'})

    psychWGCNA.analyseWGCNA()

    print(psychWGCNA.limmaResults)

    psychWGCNA.exportResults()
    psychWGCNA.saveWGCNA()


if __name__ == '__main__':
    main()
